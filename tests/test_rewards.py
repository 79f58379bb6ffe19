from __future__ import annotations

import pytest

from humanmine.engine.rewards import (
    base_reward,
    compute_close_reward,
    estimate_reward_range,
    is_referral_eligible,
    referral_bonus,
    reward_level,
    stake_adjusted_reward,
    streak_outcome,
)
from humanmine.errors import InvalidStakeAmount
from humanmine.ledger.config import GameConfig
from humanmine.ledger.constants import DAY_SECONDS, TOKEN


def test_reward_level_cycles_through_level_count() -> None:
    levels = [reward_level(n, 10) for n in range(1, 12)]
    assert levels == [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 0]
    assert reward_level(0, 10) == 0
    assert reward_level(21, 10) == 0
    assert reward_level(5, 1) == 0


def test_base_reward_per_level() -> None:
    cfg = GameConfig()
    assert base_reward(cfg, 0) == TOKEN // 10
    assert base_reward(cfg, 9) == 91 * TOKEN // 100


def test_stake_adjusted_reward_is_linear_in_stake() -> None:
    base = base_reward(GameConfig(), 3)
    one = stake_adjusted_reward(base, TOKEN)
    assert one == base
    assert stake_adjusted_reward(base, 7 * TOKEN) == 7 * one
    assert stake_adjusted_reward(base, 0) == 0
    # floor division on fractional stake
    assert stake_adjusted_reward(3, TOKEN // 2) == 1


def test_single_session_minimum_payout() -> None:
    """One session of 10 tokens closed alone pays min_reward x 10."""
    r = compute_close_reward(
        GameConfig(),
        active_sessions=1,
        staked_amount=10 * TOKEN,
        referral_eligible=False,
        last_finished_at=0,
        consecutive_count=0,
        now_s=DAY_SECONDS,
    )
    assert r.level == 0
    assert r.payout == TOKEN
    assert r.referral_bonus == 0
    assert r.streak_bonus == 0
    assert r.streak_count == 1
    assert r.total == TOKEN


def test_third_open_session_earns_level_two() -> None:
    r = compute_close_reward(
        GameConfig(),
        active_sessions=3,
        staked_amount=10 * TOKEN,
        referral_eligible=False,
        last_finished_at=0,
        consecutive_count=0,
        now_s=DAY_SECONDS,
    )
    assert r.level == 2
    assert r.payout == 28 * TOKEN // 10


def test_referral_and_streak_bonuses_stack() -> None:
    cfg = GameConfig()
    now = 10 * DAY_SECONDS
    r = compute_close_reward(
        cfg,
        active_sessions=2,
        staked_amount=10 * TOKEN,
        referral_eligible=True,
        last_finished_at=now - DAY_SECONDS,
        consecutive_count=4,
        now_s=now,
    )
    assert r.level == 1
    assert r.payout == 19 * TOKEN // 10
    assert r.referral_bonus == 19 * TOKEN // 100
    assert r.streak_count == 5
    assert r.streak_bonus == cfg.streak_bonus
    assert r.total == r.payout + r.referral_bonus + r.streak_bonus
    assert r.to_json()["total"] == r.total


def test_referral_bonus_bps() -> None:
    assert referral_bonus(10_000, 1000) == 1000
    assert referral_bonus(9, 1000) == 0
    assert referral_bonus(10_000, 0) == 0


def test_referral_eligibility_window_is_strict() -> None:
    kw = dict(caller="alice", referral_target="bob", opened_at=1000, cooldown_s=100)
    assert is_referral_eligible(target_opened_at=1001, **kw) is True
    assert is_referral_eligible(target_opened_at=1099, **kw) is True
    assert is_referral_eligible(target_opened_at=1000, **kw) is False
    assert is_referral_eligible(target_opened_at=1100, **kw) is False
    assert is_referral_eligible(target_opened_at=0, **kw) is False


def test_referral_needs_a_distinct_target() -> None:
    assert is_referral_eligible(
        caller="alice", referral_target=None, opened_at=1000, target_opened_at=1001, cooldown_s=100
    ) is False
    assert is_referral_eligible(
        caller="alice", referral_target="alice", opened_at=1000, target_opened_at=1001, cooldown_s=100
    ) is False


def test_streak_window_boundary_is_inclusive() -> None:
    cfg = GameConfig()
    last = 5 * DAY_SECONDS
    assert streak_outcome(cfg, last_finished_at=last, consecutive_count=2, now_s=last + cfg.streak_window_s) == (
        3,
        cfg.streak_bonus,
    )
    assert streak_outcome(cfg, last_finished_at=last, consecutive_count=2, now_s=last + cfg.streak_window_s + 1) == (
        1,
        0,
    )


def test_first_close_starts_a_streak_without_bonus() -> None:
    assert streak_outcome(GameConfig(), last_finished_at=0, consecutive_count=0, now_s=DAY_SECONDS) == (1, 0)


def test_estimate_reward_range() -> None:
    est = estimate_reward_range(GameConfig(), 10 * TOKEN)
    assert est.min_payout == TOKEN
    assert est.max_payout == 91 * TOKEN // 10
    assert est.max_total == est.max_payout + est.max_payout // 10 + GameConfig().streak_bonus


def test_estimate_rejects_out_of_bounds_stake() -> None:
    with pytest.raises(InvalidStakeAmount) as e:
        estimate_reward_range(GameConfig(), 101 * TOKEN)
    assert e.value.code == "InvalidStakeAmount"
