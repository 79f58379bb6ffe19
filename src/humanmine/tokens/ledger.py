# src/humanmine/tokens/ledger.py
from __future__ import annotations

"""Fungible-token collaborator contract.

Two token ledgers are involved:
  - the spend token, which receives the stake at open;
  - the reward token, whose balance held by the engine address is the treasury.

A ledger client is bound to the engine's own address: `transfer` moves the
engine's tokens, `transfer_from` spends an allowance the holder granted the
engine. Ledgers that support signed permits additionally implement
`permit_transfer_from`. The orchestrator accepts either authorization form.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from humanmine.errors import MiningError, TransferFailed

Json = Dict[str, Any]


@runtime_checkable
class FungibleTokenLedger(Protocol):
    def balance_of(self, holder: str) -> int: ...

    def transfer(self, to: str, amount: int) -> None: ...

    def transfer_from(self, holder: str, to: str, amount: int) -> None: ...


@dataclass(frozen=True, slots=True)
class Allowance:
    """Stake is pulled under an allowance granted beforehand."""

    def to_json(self) -> Json:
        return {"kind": "allowance"}


@dataclass(frozen=True, slots=True)
class TransferPermit:
    """One-shot signed authorization to move `amount` from the owner to the engine."""

    nonce: int
    deadline: int
    signature: str

    def to_json(self) -> Json:
        return {"kind": "permit", "nonce": int(self.nonce), "deadline": int(self.deadline), "signature": self.signature}


TransferAuthorization = Union[Allowance, TransferPermit]


@runtime_checkable
class DelegatedTransferLedger(Protocol):
    def permit_transfer_from(self, permit: TransferPermit, owner: str, to: str, amount: int) -> None: ...


def authorization_from_json(j: Any) -> TransferAuthorization:
    if isinstance(j, (Allowance, TransferPermit)):
        return j
    if j is None:
        return Allowance()
    if not isinstance(j, dict):
        raise TransferFailed("malformed_authorization", {"type": type(j).__name__})
    kind = str(j.get("kind") or "allowance").strip().lower()
    if kind == "allowance":
        return Allowance()
    if kind == "permit":
        try:
            return TransferPermit(
                nonce=int(j.get("nonce")),
                deadline=int(j.get("deadline")),
                signature=str(j.get("signature") or ""),
            )
        except (TypeError, ValueError) as e:
            raise TransferFailed("malformed_authorization", {"error": str(e)}) from e
    raise TransferFailed("unknown_authorization_kind", {"kind": kind})


def _failure(exc: Exception, reason: str, details: Json) -> TransferFailed:
    d = dict(details)
    d["error"] = f"{type(exc).__name__}: {exc}"
    return TransferFailed(reason, d)


def collect_stake(
    token: FungibleTokenLedger,
    *,
    holder: str,
    engine_address: str,
    amount: int,
    authorization: Optional[TransferAuthorization] = None,
) -> None:
    """Move `amount` spend tokens from holder to the engine using the given authorization."""
    auth = authorization if authorization is not None else Allowance()
    details: Json = {"holder": holder, "amount": int(amount), "authorization": auth.to_json()["kind"]}
    if isinstance(auth, TransferPermit) and not isinstance(token, DelegatedTransferLedger):
        raise TransferFailed("permit_not_supported", details)
    try:
        if isinstance(auth, TransferPermit):
            token.permit_transfer_from(auth, holder, engine_address, int(amount))  # type: ignore[union-attr]
        else:
            token.transfer_from(holder, engine_address, int(amount))
    except MiningError:
        raise
    except Exception as e:
        raise _failure(e, "stake_transfer_failed", details) from e


def pay_out(token: FungibleTokenLedger, *, to: str, amount: int) -> None:
    if int(amount) <= 0:
        return
    try:
        token.transfer(to, int(amount))
    except MiningError:
        raise
    except Exception as e:
        raise _failure(e, "reward_transfer_failed", {"to": to, "amount": int(amount)}) from e


def treasury_balance(token: FungibleTokenLedger, engine_address: str) -> int:
    try:
        return int(token.balance_of(engine_address))
    except MiningError:
        raise
    except Exception as e:
        raise _failure(e, "balance_query_failed", {"holder": engine_address}) from e


__all__ = [
    "Allowance",
    "DelegatedTransferLedger",
    "FungibleTokenLedger",
    "TransferAuthorization",
    "TransferPermit",
    "authorization_from_json",
    "collect_stake",
    "pay_out",
    "treasury_balance",
]
