# src/humanmine/engine/admin.py
from __future__ import annotations

"""Administration: bounded configuration setters, admin handover, surplus withdrawal.

All entry points require the caller to be the single admin principal stored in
state["admin"]. Config changes are validated against the whole resulting
GameConfig before they are stored.
"""

from typing import Any, Dict, Mapping

from humanmine.engine.solvency import reserve_report
from humanmine.errors import InsufficientReserve, InvalidConfig, Unauthorized
from humanmine.ledger.config import CONFIG_FIELDS, GameConfig, game_config_from_state, store_game_config
from humanmine.ledger.state import get_pool
from humanmine.tokens.ledger import FungibleTokenLedger, pay_out, treasury_balance

Json = Dict[str, Any]


def _as_str(v: Any) -> str:
    return v.strip().lower() if isinstance(v, str) else ""


def current_admin(state: Json) -> str:
    return _as_str(state.get("admin"))


def require_admin(state: Json, caller: str, *, action: str) -> None:
    admin = current_admin(state)
    if not admin or _as_str(caller) != admin:
        raise Unauthorized(caller=_as_str(caller), action=action)


def apply_config_update(state: Json, *, caller: str, changes: Mapping[str, Any]) -> Json:
    """Apply several field changes at once; the result must satisfy every config invariant."""
    require_admin(state, caller, action="config_set")
    if not changes:
        raise InvalidConfig("empty_update", {})
    unknown = sorted(k for k in changes if k not in CONFIG_FIELDS)
    if unknown:
        raise InvalidConfig("unknown_field", {"fields": unknown})

    before = game_config_from_state(state)
    after = before.with_updates(**dict(changes))
    store_game_config(state, after)
    return {
        "applied": "CONFIG_SET",
        "changed": {k: int(getattr(after, k)) for k in sorted(changes)},
    }


def set_stake_bounds(state: Json, *, caller: str, stake_min: int, stake_max: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"stake_min": stake_min, "stake_max": stake_max})


def set_min_reward(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"min_reward": value})


def set_per_level_bonus(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"per_level_bonus": value})


def set_level_count(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"level_count": value})


def set_referral_bonus_bps(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"referral_bonus_bps": value})


def set_cooldown(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"cooldown_s": value})


def set_streak_window(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"streak_window_s": value})


def set_streak_bonus(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"streak_bonus": value})


def set_safety_discount_bps(state: Json, *, caller: str, value: int) -> Json:
    return apply_config_update(state, caller=caller, changes={"safety_discount_bps": value})


def transfer_admin(state: Json, *, caller: str, new_admin: str) -> Json:
    require_admin(state, caller, action="admin_transfer")
    nxt = _as_str(new_admin)
    if not nxt:
        raise InvalidConfig("missing_new_admin", {})
    prev = current_admin(state)
    state["admin"] = nxt
    return {"applied": "ADMIN_TRANSFER", "previous": prev, "admin": nxt}


def withdraw_surplus(
    state: Json,
    *,
    caller: str,
    reward_token: FungibleTokenLedger,
    engine_address: str,
    to: str,
    amount: int,
) -> Json:
    """Withdraw reward tokens, never dipping below the reserve for the current active stake."""
    require_admin(state, caller, action="treasury_withdraw")
    amt = int(amount)
    dest = _as_str(to)
    if amt <= 0 or not dest:
        raise InvalidConfig("invalid_withdrawal", {"amount": amt, "to": dest})

    cfg: GameConfig = game_config_from_state(state)
    pool = get_pool(state)
    report = reserve_report(
        cfg,
        total_stake=pool.active_stake,
        treasury_balance=treasury_balance(reward_token, engine_address),
    )
    if amt > report.surplus:
        raise InsufficientReserve(
            required=report.required + amt,
            available=report.treasury_balance,
            total_stake=pool.active_stake,
        )

    pay_out(reward_token, to=dest, amount=amt)
    return {"applied": "TREASURY_WITHDRAW", "to": dest, "amount": amt, "surplus_before": report.surplus}


__all__ = [
    "apply_config_update",
    "current_admin",
    "require_admin",
    "set_cooldown",
    "set_level_count",
    "set_min_reward",
    "set_per_level_bonus",
    "set_referral_bonus_bps",
    "set_safety_discount_bps",
    "set_stake_bounds",
    "set_streak_bonus",
    "set_streak_window",
    "transfer_admin",
    "withdraw_surplus",
]
