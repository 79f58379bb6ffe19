from __future__ import annotations

import pytest

from humanmine.errors import (
    AlreadyMining,
    CannotReferSelf,
    InsufficientReserve,
    InvalidStakeAmount,
    ProofInvalid,
    TransferFailed,
)
from humanmine.identity.proof import fingerprint_key, signal_hash
from humanmine.ledger.constants import TOKEN
from humanmine.ledger.state import count_open_sessions
from humanmine.testing.fakes import deterministic_ed25519_keypair, simple_proof
from humanmine.tokens.ledger import TransferPermit


def test_open_session_records_identity_and_pool(world) -> None:
    ev = world.open("alice", 11)

    assert ev.caller == "alice"
    assert ev.identity == fingerprint_key(11)
    assert ev.amount == 10 * TOKEN
    assert ev.opened_at == world.clock.now

    st = world.executor.read_state()
    assert st["sessions"][fingerprint_key(11)]["opened_at"] == world.clock.now
    assert st["callers"]["alice"] == fingerprint_key(11)
    assert st["pool"] == {"active_sessions": 1, "active_stake": 10 * TOKEN}
    assert count_open_sessions(st) == 1

    assert world.collab.spend.balance_of("engine") == 10 * TOKEN
    assert world.collab.spend.balance_of("alice") == 0


def test_verifier_receives_caller_signal_and_scope(world) -> None:
    world.open("alice", 11)
    root, group_id, signal, nullifier, ext = world.collab.verifier.calls[-1]
    assert group_id == 1
    assert signal == signal_hash("alice")
    assert nullifier == 11
    assert ext == world.scope.external_nullifier


def test_same_identity_cannot_open_twice(world) -> None:
    world.open("alice", 11)
    world.fund("mallory")
    with pytest.raises(AlreadyMining) as e:
        world.executor.open_session(caller="mallory", amount=10 * TOKEN, proof=simple_proof(11))
    assert e.value.code == "AlreadyMining"
    assert world.executor.pool().active_sessions == 1


def test_same_caller_cannot_open_under_another_identity(world) -> None:
    world.open("alice", 11)
    world.fund("alice")
    with pytest.raises(AlreadyMining):
        world.executor.open_session(caller="alice", amount=10 * TOKEN, proof=simple_proof(12))


def test_already_mining_is_checked_before_self_referral(world) -> None:
    world.open("alice", 11)
    with pytest.raises(AlreadyMining):
        world.executor.open_session(caller="alice", amount=10 * TOKEN, proof=simple_proof(11), referral="alice")


def test_self_referral_is_rejected_before_stake_bounds(world) -> None:
    with pytest.raises(CannotReferSelf):
        world.executor.open_session(caller="alice", amount=0, proof=simple_proof(11), referral="ALICE")


def test_stake_bounds_are_inclusive(world) -> None:
    world.open("alice", 1, amount=1 * TOKEN)
    world.open("bob", 2, amount=100 * TOKEN)

    for amount in (TOKEN - 1, 100 * TOKEN + 1):
        with pytest.raises(InvalidStakeAmount) as e:
            world.executor.open_session(caller="carol", amount=amount, proof=simple_proof(3))
        assert e.value.details["amount"] == amount


def test_stake_bounds_are_checked_before_reserve(world_factory) -> None:
    w = world_factory(treasury=0)
    with pytest.raises(InvalidStakeAmount):
        w.executor.open_session(caller="alice", amount=0, proof=simple_proof(11))


def test_reserve_is_checked_before_the_proof(world_factory) -> None:
    w = world_factory(treasury=TOKEN)
    w.collab.verifier.rejected_nullifiers.add(11)
    w.fund("alice")

    with pytest.raises(InsufficientReserve) as e:
        w.executor.open_session(caller="alice", amount=10 * TOKEN, proof=simple_proof(11))

    assert e.value.kind == "capacity"
    assert e.value.details["required"] == 85995 * 10**14
    assert e.value.details["available"] == TOKEN
    assert w.collab.verifier.calls == []


def test_reserve_accounts_for_already_active_stake(world_factory) -> None:
    # Enough for one 10-token session, not for two.
    w = world_factory(treasury=10 * TOKEN)
    w.open("alice", 11)
    with pytest.raises(InsufficientReserve) as e:
        w.open("bob", 12)
    assert e.value.details["total_stake"] == 20 * TOKEN


def test_rejected_proof_changes_nothing(world) -> None:
    world.collab.verifier.rejected_nullifiers.add(11)
    world.fund("alice")
    before = world.executor.read_state()

    with pytest.raises(ProofInvalid) as e:
        world.executor.open_session(caller="alice", amount=10 * TOKEN, proof=simple_proof(11))

    assert e.value.kind == "external"
    assert world.executor.read_state() == before
    assert world.collab.spend.balance_of("alice") == 10 * TOKEN


def test_failed_stake_transfer_rolls_back_the_open(world) -> None:
    # No allowance granted.
    world.collab.spend.mint("alice", 10 * TOKEN)
    with pytest.raises(TransferFailed) as e:
        world.executor.open_session(caller="alice", amount=10 * TOKEN, proof=simple_proof(11))

    assert e.value.reason == "stake_transfer_failed"
    st = world.executor.read_state()
    assert st["sessions"] == {}
    assert st["callers"] == {}
    assert st["pool"] == {"active_sessions": 0, "active_stake": 0}
    assert world.executor.session_status("alice").phase == "idle"


def test_open_with_signed_permit(world) -> None:
    owner, seed = deterministic_ed25519_keypair(label="permit-owner")
    world.collab.spend.mint(owner, 10 * TOKEN)
    permit = world.collab.spend.sign_permit(
        owner_privkey=seed, spender="engine", amount=10 * TOKEN, nonce=1, deadline=world.clock.now + 60
    )

    ev = world.executor.open_session(caller=owner, amount=10 * TOKEN, proof=simple_proof(21), authorization=permit)

    assert ev.caller == owner
    assert world.collab.spend.balance_of("engine") == 10 * TOKEN


def test_expired_permit_is_a_transfer_failure(world) -> None:
    owner, seed = deterministic_ed25519_keypair(label="permit-owner")
    world.collab.spend.mint(owner, 10 * TOKEN)
    permit = world.collab.spend.sign_permit(
        owner_privkey=seed, spender="engine", amount=10 * TOKEN, nonce=1, deadline=world.clock.now - 1
    )
    with pytest.raises(TransferFailed):
        world.executor.open_session(caller=owner, amount=10 * TOKEN, proof=simple_proof(21), authorization=permit)
    assert world.executor.pool().active_sessions == 0


def test_forged_permit_is_a_transfer_failure(world) -> None:
    owner, _ = deterministic_ed25519_keypair(label="permit-owner")
    world.collab.spend.mint(owner, 10 * TOKEN)
    permit = TransferPermit(nonce=1, deadline=world.clock.now + 60, signature="00" * 64)
    with pytest.raises(TransferFailed):
        world.executor.open_session(caller=owner, amount=10 * TOKEN, proof=simple_proof(21), authorization=permit)
