from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest

# Ensure local "src/" takes precedence over any globally-installed "humanmine" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from humanmine.identity.proof import ProofScope  # noqa: E402
from humanmine.ledger.constants import TOKEN  # noqa: E402
from humanmine.runtime.executor import MiningExecutor  # noqa: E402
from humanmine.runtime.sqlite_db import MemoryLedgerStore  # noqa: E402
from humanmine.testing.fakes import DevCollaborators, dev_collaborators, simple_proof  # noqa: E402

ENGINE = "engine"
ADMIN = "admin"
T0 = 1_700_000_000


@dataclass
class Clock:
    now: int = T0

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += int(seconds)
        return self.now


@dataclass
class World:
    clock: Clock
    collab: DevCollaborators
    executor: MiningExecutor
    scope: ProofScope

    def fund(self, caller: str, amount: int = 10 * TOKEN) -> None:
        """Give the caller spend tokens and approve the engine for them."""
        self.collab.spend.mint(caller, amount)
        self.collab.spend.approve(caller, ENGINE, self.collab.spend.allowance(caller, ENGINE) + amount)

    def open(self, caller: str, nullifier: int, *, amount: int = 10 * TOKEN, referral: Optional[str] = None):
        self.fund(caller, amount)
        return self.executor.open_session(
            caller=caller,
            amount=amount,
            proof=simple_proof(nullifier),
            referral=referral,
        )


def make_world(*, store=None, treasury: int = 1_000 * TOKEN, clock: Optional[Clock] = None) -> World:
    clk = clock or Clock()
    collab = dev_collaborators(ENGINE, now=clk)
    collab.reward.mint(ENGINE, treasury)
    scope = ProofScope(app_id="app_test", action="mine", group_id=1)
    ex = MiningExecutor(
        store=store if store is not None else MemoryLedgerStore(),
        verifier=collab.verifier,
        spend_token=collab.spend_token,
        reward_token=collab.reward_token,
        engine_address=ENGINE,
        scope=scope,
        admin_address=ADMIN,
        clock=clk,
    )
    return World(clock=clk, collab=collab, executor=ex, scope=scope)


@pytest.fixture
def world() -> World:
    return make_world()


@pytest.fixture
def world_factory():
    return make_world
