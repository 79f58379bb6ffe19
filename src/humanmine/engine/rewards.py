# src/humanmine/engine/rewards.py
from __future__ import annotations

"""
Reward engine.

Pure computations over (config, pool, ledger records). Nothing here reads or
writes ledger state; callers pass the values in so every piece is independently
testable.

Reward for a close:

  level   = 0 if n == 0 else (n - 1) % level_count      n = open sessions incl. the closing one
  base    = min_reward + per_level_bonus * level
  payout  = base * staked_amount // STAKE_UNIT
  referral bonus = payout * referral_bonus_bps // 10_000  (eligible referrals only)
  streak bonus   = flat streak_bonus while the streak is maintained
  total   = payout + referral bonus + streak bonus
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from humanmine.errors import InvalidStakeAmount
from humanmine.ledger.config import GameConfig
from humanmine.ledger.constants import BPS_DENOMINATOR, STAKE_UNIT

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class RewardBreakdown:
    level: int
    payout: int
    referral_bonus: int
    streak_bonus: int
    streak_count: int
    referral_applied: bool

    @property
    def total(self) -> int:
        return int(self.payout) + int(self.referral_bonus) + int(self.streak_bonus)

    def to_json(self) -> Json:
        return {
            "level": int(self.level),
            "payout": int(self.payout),
            "referral_bonus": int(self.referral_bonus),
            "streak_bonus": int(self.streak_bonus),
            "streak_count": int(self.streak_count),
            "referral_applied": bool(self.referral_applied),
            "total": int(self.total),
        }


@dataclass(frozen=True, slots=True)
class RewardEstimate:
    amount: int
    min_payout: int
    max_payout: int
    max_total: int

    def to_json(self) -> Json:
        return {
            "amount": int(self.amount),
            "min_payout": int(self.min_payout),
            "max_payout": int(self.max_payout),
            "max_total": int(self.max_total),
        }


def reward_level(active_sessions: int, level_count: int) -> int:
    """Cyclic level from the number of open sessions (including the closing one)."""
    n = int(active_sessions)
    if n <= 0:
        return 0
    return (n - 1) % max(int(level_count), 1)


def base_reward(cfg: GameConfig, level: int) -> int:
    return int(cfg.min_reward) + int(cfg.per_level_bonus) * int(level)


def stake_adjusted_reward(base: int, staked_amount: int) -> int:
    return int(base) * int(staked_amount) // STAKE_UNIT


def referral_bonus(reward: int, bonus_bps: int) -> int:
    return int(reward) * int(bonus_bps) // BPS_DENOMINATOR


def is_referral_eligible(
    *,
    caller: str,
    referral_target: Optional[str],
    opened_at: int,
    target_opened_at: int,
    cooldown_s: int,
) -> bool:
    """True iff the nominee started a session strictly inside (opened_at, opened_at + cooldown)."""
    target = (referral_target or "").strip()
    if not target or target == str(caller):
        return False
    t = int(target_opened_at)
    start = int(opened_at)
    return start < t < start + int(cooldown_s)


def streak_outcome(cfg: GameConfig, *, last_finished_at: int, consecutive_count: int, now_s: int) -> Tuple[int, int]:
    """Return (new_streak_count, streak_bonus) for a close at now_s."""
    last = int(last_finished_at)
    if last > 0 and int(now_s) - last <= int(cfg.streak_window_s):
        return max(int(consecutive_count), 0) + 1, int(cfg.streak_bonus)
    return 1, 0


def compute_close_reward(
    cfg: GameConfig,
    *,
    active_sessions: int,
    staked_amount: int,
    referral_eligible: bool,
    last_finished_at: int,
    consecutive_count: int,
    now_s: int,
) -> RewardBreakdown:
    level = reward_level(active_sessions, cfg.level_count)
    payout = stake_adjusted_reward(base_reward(cfg, level), staked_amount)
    ref_bonus = referral_bonus(payout, cfg.referral_bonus_bps) if referral_eligible else 0
    streak_count, streak_bonus = streak_outcome(
        cfg,
        last_finished_at=last_finished_at,
        consecutive_count=consecutive_count,
        now_s=now_s,
    )
    return RewardBreakdown(
        level=level,
        payout=payout,
        referral_bonus=ref_bonus,
        streak_bonus=streak_bonus,
        streak_count=streak_count,
        referral_applied=bool(referral_eligible),
    )


def require_stake_in_bounds(cfg: GameConfig, amount: int) -> None:
    a = int(amount)
    if not int(cfg.stake_min) <= a <= int(cfg.stake_max):
        raise InvalidStakeAmount(a, cfg.stake_min, cfg.stake_max)


def estimate_reward_range(cfg: GameConfig, amount: int) -> RewardEstimate:
    """Payout range for a stake: level 0 up to the top level plus both bonuses."""
    require_stake_in_bounds(cfg, amount)
    lo = stake_adjusted_reward(base_reward(cfg, 0), amount)
    hi = stake_adjusted_reward(base_reward(cfg, cfg.top_level), amount)
    top = hi + referral_bonus(hi, cfg.referral_bonus_bps) + int(cfg.streak_bonus)
    return RewardEstimate(amount=int(amount), min_payout=lo, max_payout=hi, max_total=top)


__all__ = [
    "RewardBreakdown",
    "RewardEstimate",
    "base_reward",
    "compute_close_reward",
    "estimate_reward_range",
    "is_referral_eligible",
    "referral_bonus",
    "require_stake_in_bounds",
    "reward_level",
    "stake_adjusted_reward",
    "streak_outcome",
]
