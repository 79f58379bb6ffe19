# src/humanmine/runtime/tx.py
from __future__ import annotations

"""Signed transaction envelopes.

The signer is an Ed25519 public key (hex) and is also the caller address the
engine sees. Envelopes carry a per-signer nonce that must be exactly
last_nonce + 1; the nonce is consumed only when the transaction commits.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from humanmine.crypto.sig import canonical_tx_message, is_ed25519_pubkey, verify_ed25519_signature
from humanmine.errors import InvalidEnvelope

Json = Dict[str, Any]

TX_SESSION_OPEN = "SESSION_OPEN"
TX_SESSION_CLOSE = "SESSION_CLOSE"
TX_CONFIG_SET = "CONFIG_SET"
TX_ADMIN_TRANSFER = "ADMIN_TRANSFER"
TX_TREASURY_WITHDRAW = "TREASURY_WITHDRAW"

SUPPORTED_TX_TYPES = frozenset(
    {TX_SESSION_OPEN, TX_SESSION_CLOSE, TX_CONFIG_SET, TX_ADMIN_TRANSFER, TX_TREASURY_WITHDRAW}
)


@dataclass(frozen=True)
class TxEnvelope:
    tx_type: str
    signer: str
    nonce: int
    payload: Dict[str, Any]
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            raise InvalidEnvelope("not_object", {"type": type(j).__name__})
        try:
            nonce = int(j.get("nonce", 0))
        except (TypeError, ValueError):
            raise InvalidEnvelope("bad_nonce", {"nonce": repr(j.get("nonce"))})
        payload = j.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidEnvelope("payload_not_object", {})
        return TxEnvelope(
            tx_type=str(j.get("tx_type", "")).strip().upper(),
            signer=str(j.get("signer", "")).strip().lower(),
            nonce=nonce,
            payload=dict(payload),
            sig=str(j.get("sig", "") or ""),
        )

    def to_json(self) -> Json:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": self.payload,
            "sig": self.sig,
        }


def last_nonce(state: Json, signer: str) -> int:
    nonces = state.get("nonces")
    if not isinstance(nonces, dict):
        return 0
    try:
        return int(nonces.get(signer, 0))
    except (TypeError, ValueError):
        return 0


def consume_nonce(state: Json, env: TxEnvelope) -> None:
    nonces = state.get("nonces")
    if not isinstance(nonces, dict):
        nonces = {}
        state["nonces"] = nonces
    nonces[env.signer] = int(env.nonce)


def admit_envelope(state: Json, env: TxEnvelope, *, chain_id: Optional[str] = None) -> None:
    """Stateless + nonce checks. Raises InvalidEnvelope."""
    if env.tx_type not in SUPPORTED_TX_TYPES:
        raise InvalidEnvelope("unsupported_tx_type", {"tx_type": env.tx_type})
    if not env.signer or not is_ed25519_pubkey(env.signer):
        raise InvalidEnvelope("bad_signer", {"signer": env.signer})
    if not env.sig:
        raise InvalidEnvelope("missing_sig", {"tx_type": env.tx_type})

    msg = canonical_tx_message(
        tx_type=env.tx_type,
        signer=env.signer,
        nonce=env.nonce,
        payload=env.payload,
        chain_id=chain_id,
    )
    if not verify_ed25519_signature(message=msg, sig=env.sig, pubkey=env.signer):
        raise InvalidEnvelope("bad_sig", {"signer": env.signer})

    expected = last_nonce(state, env.signer) + 1
    if int(env.nonce) != expected:
        raise InvalidEnvelope("bad_nonce", {"expected": expected, "got": int(env.nonce)})


__all__ = [
    "SUPPORTED_TX_TYPES",
    "TX_ADMIN_TRANSFER",
    "TX_CONFIG_SET",
    "TX_SESSION_CLOSE",
    "TX_SESSION_OPEN",
    "TX_TREASURY_WITHDRAW",
    "TxEnvelope",
    "admit_envelope",
    "consume_nonce",
    "last_nonce",
]
