from __future__ import annotations

import pytest

from humanmine.errors import ProofInvalid
from humanmine.identity.proof import (
    AttestationProofVerifier,
    IdentityProof,
    ProofScope,
    decode_attestation,
    encode_attestation,
    external_nullifier,
    signal_hash,
)
from humanmine.ledger.constants import DAY_SECONDS
from humanmine.runtime.executor import MiningExecutor
from humanmine.runtime.sqlite_db import MemoryLedgerStore
from humanmine.testing.fakes import AttestingOracle, dev_collaborators

SCOPE = ProofScope(app_id="app_test", action="mine", group_id=1)


def _verify(v: AttestationProofVerifier, p: IdentityProof, *, caller: str, scope: ProofScope = SCOPE) -> None:
    v.verify(p.root, scope.group_id, signal_hash(caller), p.nullifier_hash, scope.external_nullifier, p.proof)


def test_attested_proof_verifies_for_its_caller() -> None:
    oracle = AttestingOracle(label="o1")
    p = oracle.issue(caller="alice", nullifier_hash=42, scope=SCOPE)
    _verify(oracle.verifier(), p, caller="alice")
    # caller addresses compare case-insensitively
    _verify(oracle.verifier(), p, caller="ALICE")


def test_proof_is_bound_to_caller() -> None:
    oracle = AttestingOracle(label="o1")
    p = oracle.issue(caller="alice", nullifier_hash=42, scope=SCOPE)
    with pytest.raises(ProofInvalid) as e:
        _verify(oracle.verifier(), p, caller="bob")
    assert e.value.reason == "attestation_invalid"


def test_proof_is_bound_to_action() -> None:
    oracle = AttestingOracle(label="o1")
    p = oracle.issue(caller="alice", nullifier_hash=42, scope=SCOPE)
    other = ProofScope(app_id="app_test", action="vote", group_id=1)
    assert other.external_nullifier != SCOPE.external_nullifier
    with pytest.raises(ProofInvalid):
        _verify(oracle.verifier(), p, caller="alice", scope=other)


def test_wrong_group_is_rejected() -> None:
    oracle = AttestingOracle(label="o1")
    p = oracle.issue(caller="alice", nullifier_hash=42, scope=SCOPE)
    with pytest.raises(ProofInvalid) as e:
        _verify(oracle.verifier(), p, caller="alice", scope=ProofScope(app_id="app_test", action="mine", group_id=0))
    assert e.value.reason == "wrong_group"


def test_untrusted_oracle_is_rejected() -> None:
    trusted = AttestingOracle(label="trusted")
    rogue = AttestingOracle(label="rogue")
    p = rogue.issue(caller="alice", nullifier_hash=42, scope=SCOPE)
    with pytest.raises(ProofInvalid):
        _verify(trusted.verifier(), p, caller="alice")


def test_attestation_packing() -> None:
    sig = bytes(range(64))
    words = encode_attestation(sig)
    assert len(words) == 8
    assert words[2:] == [0] * 6
    assert decode_attestation(words) == sig


def test_external_nullifier_depends_on_app_and_action() -> None:
    assert external_nullifier("a", "mine") != external_nullifier("b", "mine")
    assert external_nullifier("a", "mine") == ProofScope(app_id="a", action="mine").external_nullifier


def test_proof_json_accepts_hex_and_decimal() -> None:
    p = IdentityProof.from_json({"root": "0x1", "nullifier_hash": "42", "proof": ["0x2", 3, "4"]})
    assert (p.root, p.nullifier_hash, p.proof) == (1, 42, [2, 3, 4])
    assert IdentityProof.from_json(p.to_json()) == p


@pytest.mark.parametrize(
    "raw",
    [
        {"root": 1, "nullifier_hash": 2, "proof": []},
        {"root": "zz", "nullifier_hash": 2, "proof": [1]},
        {"root": 1, "nullifier_hash": -2, "proof": [1]},
        "not-a-proof",
    ],
)
def test_malformed_proof_json(raw) -> None:
    with pytest.raises(ProofInvalid) as e:
        IdentityProof.from_json(raw)
    assert e.value.reason == "malformed_proof"
    assert e.value.kind == "input"


def test_executor_with_attesting_oracle() -> None:
    now = [1_700_000_000]
    collab = dev_collaborators("engine", now=lambda: now[0])
    collab.reward.mint("engine", 100 * 10**18)
    oracle = AttestingOracle(label="o1")
    ex = MiningExecutor(
        store=MemoryLedgerStore(),
        verifier=oracle.verifier(),
        spend_token=collab.spend_token,
        reward_token=collab.reward_token,
        engine_address="engine",
        scope=SCOPE,
        admin_address="admin",
        clock=lambda: now[0],
    )
    collab.spend.mint("alice", 10**19)
    collab.spend.approve("alice", "engine", 10**19)

    stolen = oracle.issue(caller="bob", nullifier_hash=7, scope=SCOPE)
    with pytest.raises(ProofInvalid):
        ex.open_session(caller="alice", amount=10**19, proof=stolen)

    ex.open_session(caller="alice", amount=10**19, proof=oracle.issue(caller="alice", nullifier_hash=7, scope=SCOPE))
    now[0] += DAY_SECONDS
    assert ex.close_session(caller="alice").total == 10**18
