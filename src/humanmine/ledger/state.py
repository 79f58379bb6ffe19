from __future__ import annotations

"""Ledger state schema: identity session ledger + pool accounting.

State is a JSON-like dict so it can be snapshotted into SQLite as-is:

  sessions[fingerprint] = {"opened_at", "staked_amount", "referral_target", "caller",
                           "referral_started_at"}
  callers[address]      = fingerprint                       (active sessions only)
  referrers[address]    = [fingerprint, ...]                (open sessions nominating address)
  streaks[address]      = {"last_finished_at", "consecutive_count"}     (written on close only)
  pool                  = {"active_sessions", "active_stake"}
  config                = GameConfig as JSON
  admin                 = administrator address
  nonces[address]       = last accepted signed-envelope nonce

A session record exists iff its session is open; `opened_at` of an absent record
reads as 0.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, Optional

from humanmine.errors import LedgerInvariantError
from humanmine.ledger.config import GameConfig, game_config_to_json

Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def _as_str(x: Any) -> str:
    return x.strip() if isinstance(x, str) else ""


def _ensure_root_dict(state: Json, key: str) -> Json:
    cur = state.get(key)
    if cur is None:
        cur = {}
        state[key] = cur
    elif not isinstance(cur, dict):
        # Fail closed: do not attempt to coerce arbitrary types.
        raise TypeError(f"state[{key!r}] must be dict, got {type(cur)}")
    return cur


def ensure_sessions(state: Json) -> Json:
    return _ensure_root_dict(state, "sessions")


def ensure_callers(state: Json) -> Json:
    return _ensure_root_dict(state, "callers")


def ensure_referrers(state: Json) -> Json:
    return _ensure_root_dict(state, "referrers")


def ensure_streaks(state: Json) -> Json:
    return _ensure_root_dict(state, "streaks")


def ensure_pool(state: Json) -> Json:
    pool = _ensure_root_dict(state, "pool")
    pool.setdefault("active_sessions", 0)
    pool.setdefault("active_stake", 0)
    return pool


def initial_state(*, admin: str, config: GameConfig) -> Json:
    return {
        "admin": str(admin),
        "config": game_config_to_json(config),
        "sessions": {},
        "callers": {},
        "referrers": {},
        "streaks": {},
        "pool": {"active_sessions": 0, "active_stake": 0},
        "nonces": {},
    }


@dataclass(frozen=True, slots=True)
class SessionRecord:
    identity: str
    opened_at: int
    staked_amount: int
    referral_target: Optional[str]
    caller: str
    referral_started_at: int = 0

    @property
    def is_open(self) -> bool:
        return self.opened_at != 0

    @classmethod
    def from_json(cls, identity: str, rec: Any) -> "SessionRecord":
        r = rec if isinstance(rec, dict) else {}
        return cls(
            identity=str(identity),
            opened_at=_as_int(r.get("opened_at"), 0),
            staked_amount=_as_int(r.get("staked_amount"), 0),
            referral_target=_as_str(r.get("referral_target")) or None,
            caller=_as_str(r.get("caller")),
            referral_started_at=_as_int(r.get("referral_started_at"), 0),
        )

    def to_json(self) -> Json:
        return {
            "opened_at": int(self.opened_at),
            "staked_amount": int(self.staked_amount),
            "referral_target": self.referral_target,
            "caller": self.caller,
            "referral_started_at": int(self.referral_started_at),
        }


@dataclass(frozen=True, slots=True)
class StreakRecord:
    last_finished_at: int = 0
    consecutive_count: int = 0

    @classmethod
    def from_json(cls, rec: Any) -> "StreakRecord":
        r = rec if isinstance(rec, dict) else {}
        return cls(
            last_finished_at=_as_int(r.get("last_finished_at"), 0),
            consecutive_count=max(_as_int(r.get("consecutive_count"), 0), 0),
        )

    def to_json(self) -> Json:
        return {
            "last_finished_at": int(self.last_finished_at),
            "consecutive_count": int(self.consecutive_count),
        }


@dataclass(frozen=True, slots=True)
class PoolState:
    active_sessions: int = 0
    active_stake: int = 0

    @classmethod
    def from_json(cls, rec: Any) -> "PoolState":
        r = rec if isinstance(rec, dict) else {}
        return cls(
            active_sessions=max(_as_int(r.get("active_sessions"), 0), 0),
            active_stake=max(_as_int(r.get("active_stake"), 0), 0),
        )

    def to_json(self) -> Json:
        return {"active_sessions": int(self.active_sessions), "active_stake": int(self.active_stake)}


# ----------------------------
# Identity session ledger
# ----------------------------


def get_session(state: Json, identity: str) -> Optional[SessionRecord]:
    sessions = state.get("sessions")
    if not isinstance(sessions, dict):
        return None
    rec = sessions.get(str(identity))
    if not isinstance(rec, dict):
        return None
    sr = SessionRecord.from_json(str(identity), rec)
    return sr if sr.is_open else None


def active_identity_for(state: Json, caller: str) -> Optional[str]:
    callers = state.get("callers")
    if not isinstance(callers, dict):
        return None
    fp = callers.get(str(caller))
    return str(fp) if isinstance(fp, str) and fp else None


def session_for_caller(state: Json, caller: str) -> Optional[SessionRecord]:
    fp = active_identity_for(state, caller)
    if fp is None:
        return None
    return get_session(state, fp)


def put_session(state: Json, rec: SessionRecord) -> None:
    if rec.opened_at == 0:
        raise LedgerInvariantError("session_opened_at_zero", {"identity": rec.identity})
    ensure_sessions(state)[rec.identity] = rec.to_json()
    ensure_callers(state)[rec.caller] = rec.identity
    if rec.referral_target:
        nominated = ensure_referrers(state).setdefault(rec.referral_target, [])
        if rec.identity not in nominated:
            nominated.append(rec.identity)


def clear_session(state: Json, rec: SessionRecord) -> None:
    ensure_sessions(state).pop(rec.identity, None)
    callers = ensure_callers(state)
    if callers.get(rec.caller) == rec.identity:
        callers.pop(rec.caller, None)
    if rec.referral_target:
        referrers = ensure_referrers(state)
        nominated = [fp for fp in referrers.get(rec.referral_target) or [] if fp != rec.identity]
        if nominated:
            referrers[rec.referral_target] = nominated
        else:
            referrers.pop(rec.referral_target, None)


def stamp_referred_start(state: Json, target: str, now_s: int) -> int:
    """Record `target` starting a session at now_s on every open session that nominated it.

    Only the first start strictly after the nominating session opened is kept.
    Returns the number of records stamped.
    """
    referrers = state.get("referrers")
    if not isinstance(referrers, dict):
        return 0
    stamped = 0
    for fp in list(referrers.get(str(target)) or []):
        rec = get_session(state, fp)
        if rec is None or rec.referral_started_at != 0 or int(now_s) <= rec.opened_at:
            continue
        ensure_sessions(state)[fp]["referral_started_at"] = int(now_s)
        stamped += 1
    return stamped


def get_streak(state: Json, caller: str) -> StreakRecord:
    streaks = state.get("streaks")
    if not isinstance(streaks, dict):
        return StreakRecord()
    return StreakRecord.from_json(streaks.get(str(caller)))


def put_streak(state: Json, caller: str, rec: StreakRecord) -> None:
    ensure_streaks(state)[str(caller)] = rec.to_json()


# ----------------------------
# Pool accounting
# ----------------------------


def get_pool(state: Json) -> PoolState:
    return PoolState.from_json(state.get("pool"))


def pool_admit(state: Json, amount: int) -> PoolState:
    cur = get_pool(state)
    nxt = PoolState(active_sessions=cur.active_sessions + 1, active_stake=cur.active_stake + int(amount))
    ensure_pool(state).update(nxt.to_json())
    return nxt


def pool_release(state: Json, amount: int) -> PoolState:
    """Release one session and its stake; both counters floor at 0."""
    cur = get_pool(state)
    nxt = PoolState(
        active_sessions=max(cur.active_sessions - 1, 0),
        active_stake=max(cur.active_stake - int(amount), 0),
    )
    ensure_pool(state).update(nxt.to_json())
    return nxt


def count_open_sessions(state: Json) -> int:
    sessions = state.get("sessions")
    if not isinstance(sessions, dict):
        return 0
    return sum(1 for fp, rec in sessions.items() if SessionRecord.from_json(fp, rec).is_open)


def sum_open_stake(state: Json) -> int:
    sessions = state.get("sessions")
    if not isinstance(sessions, dict):
        return 0
    total = 0
    for fp, rec in sessions.items():
        sr = SessionRecord.from_json(fp, rec)
        if sr.is_open:
            total += sr.staked_amount
    return total


def check_pool_consistency(state: Json) -> None:
    """Raise if the pool aggregate drifted from the open session records."""
    pool = get_pool(state)
    n = count_open_sessions(state)
    stake = sum_open_stake(state)
    if pool.active_sessions != n or pool.active_stake != stake:
        raise LedgerInvariantError(
            "pool_drift",
            {
                "active_sessions": pool.active_sessions,
                "open_records": n,
                "active_stake": pool.active_stake,
                "open_stake": stake,
            },
        )


def snapshot(state: Json) -> Json:
    return copy.deepcopy(state)


__all__ = [
    "PoolState",
    "SessionRecord",
    "StreakRecord",
    "active_identity_for",
    "check_pool_consistency",
    "clear_session",
    "count_open_sessions",
    "ensure_callers",
    "ensure_pool",
    "ensure_referrers",
    "ensure_sessions",
    "ensure_streaks",
    "get_pool",
    "get_session",
    "get_streak",
    "initial_state",
    "pool_admit",
    "pool_release",
    "put_session",
    "put_streak",
    "session_for_caller",
    "snapshot",
    "stamp_referred_start",
    "sum_open_stake",
]
