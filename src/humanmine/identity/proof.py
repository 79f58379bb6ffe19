# src/humanmine/identity/proof.py
from __future__ import annotations

"""Identity-proof collaborator contract.

The engine never checks proofs itself. It hands the proof, together with a
signal bound to the caller address and a scope bound to (app_id, action), to an
IdentityProofVerifier. The verifier either returns or raises; any exception
aborts the open.

`nullifier_hash` is the identity fingerprint: one value per person per action,
revealing nothing else about the person.

AttestationProofVerifier adapts an oracle that checks proofs off-engine and
attests valid ones with an Ed25519 signature over the canonical verify arguments.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Protocol, runtime_checkable

from humanmine.crypto.sig import canonical_json_bytes, is_ed25519_pubkey, verify_ed25519_signature
from humanmine.errors import KIND_INPUT, ProofInvalid
from humanmine.ledger.constants import DEFAULT_GROUP_ID

Json = Dict[str, Any]


def hash_to_field(data: bytes) -> int:
    """Hash bytes into a ~248-bit field element (sha256 shifted right by 8 bits)."""
    return int.from_bytes(hashlib.sha256(bytes(data)).digest(), "big") >> 8


def signal_hash(caller: str) -> int:
    return hash_to_field(str(caller).strip().lower().encode("utf-8"))


def external_nullifier(app_id: str, action: str) -> int:
    app = hash_to_field(str(app_id).encode("utf-8"))
    return hash_to_field(app.to_bytes(32, "big") + str(action).encode("utf-8"))


def fingerprint_key(nullifier_hash: int) -> str:
    """Ledger key for an identity fingerprint."""
    return f"{int(nullifier_hash):#066x}"


@dataclass(frozen=True, slots=True)
class ProofScope:
    app_id: str
    action: str
    group_id: int = DEFAULT_GROUP_ID

    @property
    def external_nullifier(self) -> int:
        return external_nullifier(self.app_id, self.action)


@dataclass(frozen=True, slots=True)
class IdentityProof:
    root: int
    nullifier_hash: int
    proof: List[int]

    @property
    def fingerprint(self) -> str:
        return fingerprint_key(self.nullifier_hash)

    @classmethod
    def from_json(cls, j: Any) -> "IdentityProof":
        if isinstance(j, IdentityProof):
            return j
        d = j if isinstance(j, dict) else {}
        try:
            root = _parse_uint(d.get("root"))
            nh = _parse_uint(d.get("nullifier_hash"))
            proof_raw = d.get("proof")
            proof = [_parse_uint(x) for x in proof_raw] if isinstance(proof_raw, list) else []
        except (TypeError, ValueError) as e:
            raise ProofInvalid("malformed_proof", {"error": str(e)}, KIND_INPUT) from e
        if not proof:
            raise ProofInvalid("malformed_proof", {"error": "empty proof"}, KIND_INPUT)
        return cls(root=root, nullifier_hash=nh, proof=proof)

    def to_json(self) -> Json:
        return {
            "root": hex(self.root),
            "nullifier_hash": hex(self.nullifier_hash),
            "proof": [hex(x) for x in self.proof],
        }


def _parse_uint(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError("bool is not an integer")
    if isinstance(v, int):
        n = v
    elif isinstance(v, str):
        s = v.strip()
        n = int(s, 16) if s.lower().startswith("0x") else int(s)
    else:
        raise TypeError(f"expected int or str, got {type(v).__name__}")
    if n < 0:
        raise ValueError("negative value")
    return n


@runtime_checkable
class IdentityProofVerifier(Protocol):
    def verify(
        self,
        root: int,
        group_id: int,
        signal: int,
        nullifier_hash: int,
        external_nullifier: int,
        proof: List[int],
    ) -> None:
        """Return if the proof is valid; raise otherwise."""


def attestation_message(
    *,
    root: int,
    group_id: int,
    signal: int,
    nullifier_hash: int,
    external_nullifier: int,
) -> bytes:
    return canonical_json_bytes(
        {
            "root": hex(int(root)),
            "group_id": int(group_id),
            "signal": hex(int(signal)),
            "nullifier_hash": hex(int(nullifier_hash)),
            "external_nullifier": hex(int(external_nullifier)),
        }
    )


def encode_attestation(sig: bytes) -> List[int]:
    """Pack a 64-byte signature into the 8 x uint256 proof array shape."""
    if len(sig) != 64:
        raise ValueError("ed25519 signature must be 64 bytes")
    words = [int.from_bytes(sig[i : i + 32], "big") for i in (0, 32)]
    return words + [0] * 6


def decode_attestation(proof: List[int]) -> bytes:
    if len(proof) < 2:
        raise ValueError("proof too short")
    return b"".join(int(w).to_bytes(32, "big") for w in proof[:2])


class AttestationProofVerifier:
    """Verifier backed by an attesting oracle's Ed25519 keys."""

    def __init__(self, *, oracle_pubkeys: Iterable[str], group_id: int = DEFAULT_GROUP_ID) -> None:
        keys: List[str] = []
        for pk in oracle_pubkeys:
            p = str(pk or "").strip()
            if not p:
                continue
            if not is_ed25519_pubkey(p):
                raise ValueError(f"invalid oracle pubkey: {p!r}")
            keys.append(p)
        if not keys:
            raise ValueError("at least one oracle pubkey is required")
        self._keys = keys
        self._group_id = int(group_id)

    def verify(
        self,
        root: int,
        group_id: int,
        signal: int,
        nullifier_hash: int,
        external_nullifier: int,
        proof: List[int],
    ) -> None:
        if int(group_id) != self._group_id:
            raise ProofInvalid("wrong_group", {"group_id": int(group_id), "expected": self._group_id})
        try:
            sig_hex = decode_attestation(list(proof)).hex()
        except (TypeError, ValueError, OverflowError) as e:
            raise ProofInvalid("malformed_proof", {"error": str(e)}) from e

        msg = attestation_message(
            root=root,
            group_id=group_id,
            signal=signal,
            nullifier_hash=nullifier_hash,
            external_nullifier=external_nullifier,
        )
        for pk in self._keys:
            if verify_ed25519_signature(message=msg, sig=sig_hex, pubkey=pk):
                return
        raise ProofInvalid("attestation_invalid", {"nullifier_hash": hex(int(nullifier_hash))})


__all__ = [
    "AttestationProofVerifier",
    "IdentityProof",
    "IdentityProofVerifier",
    "ProofScope",
    "attestation_message",
    "decode_attestation",
    "encode_attestation",
    "external_nullifier",
    "fingerprint_key",
    "hash_to_field",
    "signal_hash",
]
