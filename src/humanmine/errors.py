from __future__ import annotations

"""Typed error taxonomy for the mining engine.

Every failure carries a stable `code` clients can branch on, a short `reason`
and a JSON-safe `details` dict. `kind` groups codes by what the caller should do:

  - input:    fix the request (bad stake, self-referral, no session, too early)
  - capacity: retry later (treasury reserve too low)
  - external: a collaborator failed (proof rejected, token transfer failed)
  - auth:     caller is not allowed to perform the action
  - config:   a configuration change would break an invariant
  - internal: ledger invariant violated (never expected in normal operation)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]

KIND_INPUT = "input"
KIND_CAPACITY = "capacity"
KIND_EXTERNAL = "external"
KIND_AUTH = "auth"
KIND_CONFIG = "config"
KIND_INTERNAL = "internal"


@dataclass
class MiningError(Exception):
    """Canonical error type for session, admin and envelope failures."""

    code: str
    reason: str
    details: Optional[Json] = None
    kind: str = KIND_INPUT

    def __str__(self) -> str:
        if not self.details:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Json:
        return {
            "code": self.code,
            "reason": self.reason,
            "kind": self.kind,
            "details": dict(self.details or {}),
        }


class AlreadyMining(MiningError):
    def __init__(self, *, identity: str = "", caller: str = "") -> None:
        super().__init__("AlreadyMining", "session_already_open", {"identity": identity, "caller": caller})


class CannotReferSelf(MiningError):
    def __init__(self, *, caller: str) -> None:
        super().__init__("CannotReferSelf", "referral_target_is_caller", {"caller": caller})


class InvalidStakeAmount(MiningError):
    def __init__(self, amount: int, minimum: int, maximum: int) -> None:
        super().__init__(
            "InvalidStakeAmount",
            "stake_out_of_bounds",
            {"amount": int(amount), "min": int(minimum), "max": int(maximum)},
        )
        self.amount = int(amount)
        self.minimum = int(minimum)
        self.maximum = int(maximum)


class SessionNotOpen(MiningError):
    def __init__(self, *, caller: str) -> None:
        super().__init__("SessionNotOpen", "no_open_session", {"caller": caller})


class CooldownNotElapsed(MiningError):
    def __init__(self, *, caller: str, unlocks_at: int, now_s: int) -> None:
        super().__init__(
            "CooldownNotElapsed",
            "cooldown_running",
            {"caller": caller, "unlocks_at": int(unlocks_at), "now": int(now_s)},
        )


class InsufficientReserve(MiningError):
    def __init__(self, *, required: int, available: int, total_stake: int) -> None:
        super().__init__(
            "InsufficientReserve",
            "treasury_below_required_reserve",
            {"required": int(required), "available": int(available), "total_stake": int(total_stake)},
            KIND_CAPACITY,
        )


class ProofInvalid(MiningError):
    def __init__(self, reason: str = "proof_rejected", details: Optional[Json] = None, kind: str = KIND_EXTERNAL) -> None:
        super().__init__("ProofInvalid", reason, details or {}, kind)


class TransferFailed(MiningError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("TransferFailed", reason, details or {}, KIND_EXTERNAL)


class Unauthorized(MiningError):
    def __init__(self, *, caller: str, action: str) -> None:
        super().__init__("Unauthorized", "admin_only", {"caller": caller, "action": action}, KIND_AUTH)


class InvalidConfig(MiningError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("InvalidConfig", reason, details or {}, KIND_CONFIG)


class InvalidEnvelope(MiningError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("InvalidEnvelope", reason, details or {}, KIND_AUTH)


class LedgerInvariantError(MiningError):
    def __init__(self, reason: str, details: Optional[Json] = None) -> None:
        super().__init__("LedgerInvariantError", reason, details or {}, KIND_INTERNAL)


__all__ = [
    "KIND_AUTH",
    "KIND_CAPACITY",
    "KIND_CONFIG",
    "KIND_EXTERNAL",
    "KIND_INPUT",
    "KIND_INTERNAL",
    "AlreadyMining",
    "CannotReferSelf",
    "CooldownNotElapsed",
    "InsufficientReserve",
    "InvalidConfig",
    "InvalidEnvelope",
    "InvalidStakeAmount",
    "LedgerInvariantError",
    "MiningError",
    "ProofInvalid",
    "SessionNotOpen",
    "TransferFailed",
    "Unauthorized",
]
