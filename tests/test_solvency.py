from __future__ import annotations

from humanmine.engine.solvency import (
    expected_referral_load,
    required_reserve,
    reserve_report,
    worst_case_base,
)
from humanmine.ledger.config import GameConfig
from humanmine.ledger.constants import TOKEN


def test_zero_stake_requires_no_reserve() -> None:
    cfg = GameConfig()
    assert required_reserve(cfg, 0) == 0
    assert required_reserve(cfg, -5) == 0


def test_required_reserve_for_ten_tokens() -> None:
    cfg = GameConfig()
    t = 10 * TOKEN
    wb = worst_case_base(cfg, t)
    assert wb == 91 * TOKEN // 10
    # half the sessions assumed to earn a 10% referral bonus
    assert expected_referral_load(cfg, wb) == wb // 20
    assert required_reserve(cfg, t) == 85995 * 10**14


def test_required_reserve_is_monotone() -> None:
    cfg = GameConfig()
    prev = 0
    for t in [1, 10**9, TOKEN, 3 * TOKEN, 100 * TOKEN, 10**6 * TOKEN]:
        cur = required_reserve(cfg, t)
        assert cur >= prev
        prev = cur


def test_large_totals_have_no_cutoff() -> None:
    cfg = GameConfig()
    small = required_reserve(cfg, 10**6 * TOKEN)
    big = required_reserve(cfg, 10**12 * TOKEN)
    assert big > small
    assert big == small * 10**6


def test_safety_discount_scales_reserve() -> None:
    t = 50 * TOKEN
    loose = required_reserve(GameConfig(safety_discount_bps=5000), t)
    tight = required_reserve(GameConfig(safety_discount_bps=9900), t)
    assert loose < tight


def test_reserve_report_surplus() -> None:
    cfg = GameConfig()
    rep = reserve_report(cfg, total_stake=10 * TOKEN, treasury_balance=10 * TOKEN)
    assert rep.required == 85995 * 10**14
    assert rep.surplus == 10 * TOKEN - rep.required
    assert rep.solvent is True

    short = reserve_report(cfg, total_stake=10 * TOKEN, treasury_balance=TOKEN)
    assert short.surplus == 0
    assert short.solvent is False
    assert short.to_json()["solvent"] is False
