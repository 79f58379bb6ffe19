from __future__ import annotations

import pytest

from humanmine.engine import admin
from humanmine.errors import InsufficientReserve, InvalidConfig, Unauthorized
from humanmine.ledger.config import GameConfig, game_config_from_state
from humanmine.ledger.constants import DAY_SECONDS, TOKEN
from humanmine.ledger.state import initial_state


def _state() -> dict:
    return initial_state(admin="admin", config=GameConfig())


def test_setters_require_admin() -> None:
    st = _state()
    with pytest.raises(Unauthorized) as e:
        admin.set_cooldown(st, caller="mallory", value=60)
    assert e.value.kind == "auth"
    assert game_config_from_state(st).cooldown_s == DAY_SECONDS


def test_each_setter_updates_one_field() -> None:
    st = _state()
    admin.set_stake_bounds(st, caller="admin", stake_min=2 * TOKEN, stake_max=50 * TOKEN)
    admin.set_min_reward(st, caller="admin", value=TOKEN // 5)
    admin.set_per_level_bonus(st, caller="admin", value=TOKEN // 20)
    admin.set_level_count(st, caller="admin", value=5)
    admin.set_referral_bonus_bps(st, caller="admin", value=2_000)
    admin.set_cooldown(st, caller="admin", value=3_600)
    admin.set_streak_window(st, caller="admin", value=7_200)
    admin.set_streak_bonus(st, caller="admin", value=0)
    admin.set_safety_discount_bps(st, caller="admin", value=5_000)

    assert game_config_from_state(st) == GameConfig(
        stake_min=2 * TOKEN,
        stake_max=50 * TOKEN,
        min_reward=TOKEN // 5,
        per_level_bonus=TOKEN // 20,
        level_count=5,
        referral_bonus_bps=2_000,
        cooldown_s=3_600,
        streak_window_s=7_200,
        streak_bonus=0,
        safety_discount_bps=5_000,
    )


@pytest.mark.parametrize(
    "changes, reason",
    [
        ({"stake_min": 0}, "stake_min_must_be_positive"),
        ({"stake_min": 200 * TOKEN}, "stake_min_exceeds_stake_max"),
        ({"level_count": 0}, "level_count_below_one"),
        ({"referral_bonus_bps": 10_001}, "referral_bonus_bps_out_of_range"),
        ({"cooldown_s": 0}, "cooldown_must_be_positive"),
        ({"safety_discount_bps": 10_000}, "safety_discount_bps_out_of_range"),
        ({"safety_discount_bps": 0}, "safety_discount_bps_out_of_range"),
        ({"min_reward": -1}, "min_reward_negative"),
        ({"colour": 3}, "unknown_field"),
        ({"cooldown_s": "soon"}, "field_not_integer"),
    ],
)
def test_invalid_updates_are_rejected_whole(changes, reason) -> None:
    st = _state()
    with pytest.raises(InvalidConfig) as e:
        admin.apply_config_update(st, caller="admin", changes=changes)
    assert e.value.reason == reason
    assert game_config_from_state(st) == GameConfig()


def test_batch_update_validated_as_a_whole() -> None:
    st = _state()
    # stake_min above the old max is fine when the max moves in the same update.
    out = admin.apply_config_update(st, caller="admin", changes={"stake_min": 150 * TOKEN, "stake_max": 200 * TOKEN})
    assert out["changed"] == {"stake_max": 200 * TOKEN, "stake_min": 150 * TOKEN}


def test_transfer_admin_hands_over_control() -> None:
    st = _state()
    out = admin.transfer_admin(st, caller="admin", new_admin="Carol")
    assert out == {"applied": "ADMIN_TRANSFER", "previous": "admin", "admin": "carol"}
    with pytest.raises(Unauthorized):
        admin.set_cooldown(st, caller="admin", value=60)
    admin.set_cooldown(st, caller="carol", value=60)


def test_withdraw_surplus_respects_reserve(world) -> None:
    w = world
    w.open("alice", 11)  # reserve 8.5995 tokens for 10 staked
    treasury = w.collab.reward.balance_of("engine")
    surplus = w.executor.reserve().surplus
    assert surplus == treasury - 85995 * 10**14

    with pytest.raises(InsufficientReserve):
        w.executor.withdraw_surplus(caller="admin", to="ops", amount=surplus + 1)

    out = w.executor.withdraw_surplus(caller="admin", to="ops", amount=surplus)
    assert out["amount"] == surplus
    assert w.collab.reward.balance_of("ops") == surplus
    assert w.executor.reserve().solvent is True


def test_withdraw_surplus_requires_admin(world) -> None:
    with pytest.raises(Unauthorized):
        world.executor.withdraw_surplus(caller="alice", to="alice", amount=1)


def test_config_update_applies_to_next_close(world) -> None:
    world.executor.update_config(caller="admin", changes={"cooldown_s": 60})
    world.open("alice", 11)
    world.clock.advance(60)
    assert world.executor.close_session(caller="alice").total == TOKEN
