# src/humanmine/runtime/executor_boot.py

from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Optional

from humanmine.identity.proof import AttestationProofVerifier, ProofScope
from humanmine.runtime.executor import MiningExecutor
from humanmine.runtime.runtime_config import RuntimeConfig, load_runtime_config
from humanmine.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from humanmine.util.structured_log import log_event

log = logging.getLogger("humanmine.boot")

DEV_COLLABORATORS = "humanmine.testing.fakes:dev_collaborators"


def resolve_factory(target: str) -> Callable[..., Any]:
    """Import a `package.module:callable` string."""
    mod_name, sep, attr = str(target or "").strip().partition(":")
    if not sep or not mod_name or not attr:
        raise ValueError(f"collaborators must look like 'module:factory'; got: {target!r}")
    mod = importlib.import_module(mod_name)
    fn = getattr(mod, attr, None)
    if not callable(fn):
        raise ValueError(f"collaborators factory not callable: {target!r}")
    return fn


def build_executor(cfg: Optional[RuntimeConfig] = None) -> MiningExecutor:
    """
    Build a MiningExecutor from an explicit runtime config or, if omitted,
    from HUMANMINE_CONFIG_PATH / HUMANMINE_* environment variables.

    Collaborators (token ledgers + proof verifier) come from the configured
    factory, called as factory(engine_address). `dev` mode falls back to the
    in-memory fakes, seeded with dev_treasury and dev_balances on every boot.
    Configured oracle keys replace the factory's verifier with an
    AttestationProofVerifier.
    """
    c = cfg or load_runtime_config()

    target = c.collaborators.strip()
    if not target:
        if c.mode != "dev":
            raise ValueError(f"mode {c.mode!r} requires HUMANMINE_COLLABORATORS")
        target = DEV_COLLABORATORS

    factory = resolve_factory(target)
    if target == DEV_COLLABORATORS:
        # In-memory tokens do not survive a restart; reseed them from config.
        collab = factory(c.engine_address, treasury=c.dev_treasury, balances=c.dev_balances)
    else:
        collab = factory(c.engine_address)

    verifier = getattr(collab, "verifier", None)
    if c.oracle_pubkeys:
        verifier = AttestationProofVerifier(oracle_pubkeys=c.oracle_pubkeys, group_id=c.group_id)
    if verifier is None:
        raise ValueError("collaborators factory returned no verifier and no oracle_pubkeys are configured")

    store = SqliteLedgerStore(db=SqliteDB(path=c.db_path))
    ex = MiningExecutor(
        store=store,
        verifier=verifier,
        spend_token=collab.spend_token,
        reward_token=collab.reward_token,
        engine_address=c.engine_address,
        scope=ProofScope(app_id=c.app_id, action=c.action, group_id=c.group_id),
        admin_address=c.admin,
        genesis_config=c.game_config(),
        chain_id=c.chain_id,
    )
    log_event(log, "executor_booted", mode=c.mode, chain_id=c.chain_id, db_path=c.db_path, collaborators=target)
    return ex


__all__ = ["DEV_COLLABORATORS", "build_executor", "resolve_factory"]
