# src/humanmine/engine/solvency.py
from __future__ import annotations

"""Solvency guard.

Minimum reward-token reserve the treasury must hold before another session is
admitted, for a hypothetical total active stake T:

  worst_base    = top-level base reward * T // STAKE_UNIT
  referral_load = worst_base * referral_bonus_bps * EXPECTED_REFERRAL_SHARE_BPS // 10_000**2
  required      = (worst_base + referral_load) * safety_discount_bps // 10_000

Every step is a floor of a product of non-negative, non-decreasing terms, so the
result is monotone in T. There is no upper cutoff on T.
"""

from dataclasses import dataclass
from typing import Any, Dict

from humanmine.engine.rewards import base_reward
from humanmine.ledger.config import GameConfig
from humanmine.ledger.constants import BPS_DENOMINATOR, EXPECTED_REFERRAL_SHARE_BPS, STAKE_UNIT

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class ReserveReport:
    total_stake: int
    worst_case_base: int
    referral_load: int
    required: int
    treasury_balance: int

    @property
    def surplus(self) -> int:
        return max(int(self.treasury_balance) - int(self.required), 0)

    @property
    def solvent(self) -> bool:
        return int(self.treasury_balance) >= int(self.required)

    def to_json(self) -> Json:
        return {
            "total_stake": int(self.total_stake),
            "worst_case_base": int(self.worst_case_base),
            "referral_load": int(self.referral_load),
            "required": int(self.required),
            "treasury_balance": int(self.treasury_balance),
            "surplus": int(self.surplus),
            "solvent": bool(self.solvent),
        }


def worst_case_base(cfg: GameConfig, total_stake: int) -> int:
    t = int(total_stake)
    if t <= 0:
        return 0
    return base_reward(cfg, cfg.top_level) * t // STAKE_UNIT


def expected_referral_load(cfg: GameConfig, worst_base: int) -> int:
    return (
        int(worst_base)
        * int(cfg.referral_bonus_bps)
        * EXPECTED_REFERRAL_SHARE_BPS
        // (BPS_DENOMINATOR * BPS_DENOMINATOR)
    )


def required_reserve(cfg: GameConfig, total_stake: int) -> int:
    wb = worst_case_base(cfg, total_stake)
    if wb <= 0:
        return 0
    gross = wb + expected_referral_load(cfg, wb)
    return gross * int(cfg.safety_discount_bps) // BPS_DENOMINATOR


def reserve_report(cfg: GameConfig, *, total_stake: int, treasury_balance: int) -> ReserveReport:
    wb = worst_case_base(cfg, total_stake)
    return ReserveReport(
        total_stake=max(int(total_stake), 0),
        worst_case_base=wb,
        referral_load=expected_referral_load(cfg, wb),
        required=required_reserve(cfg, total_stake),
        treasury_balance=int(treasury_balance),
    )


__all__ = [
    "ReserveReport",
    "expected_referral_load",
    "required_reserve",
    "reserve_report",
    "worst_case_base",
]
