from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from humanmine.engine import admin
from humanmine.engine.rewards import RewardEstimate, estimate_reward_range
from humanmine.engine.sessions import (
    ReferralStatus,
    SessionContext,
    SessionFinished,
    SessionOpened,
    SessionStatus,
    apply_close_session,
    apply_open_session,
    referral_status,
    session_status,
)
from humanmine.engine.solvency import ReserveReport, reserve_report
from humanmine.errors import InvalidEnvelope, MiningError
from humanmine.identity.proof import IdentityProof, IdentityProofVerifier, ProofScope
from humanmine.ledger.config import GameConfig, game_config_from_state, game_config_to_json
from humanmine.ledger.state import PoolState, check_pool_consistency, get_pool, initial_state
from humanmine.runtime.sqlite_db import MemoryLedgerStore, SqliteLedgerStore
from humanmine.runtime.tx import (
    TX_ADMIN_TRANSFER,
    TX_CONFIG_SET,
    TX_SESSION_CLOSE,
    TX_SESSION_OPEN,
    TX_TREASURY_WITHDRAW,
    TxEnvelope,
    admit_envelope,
    consume_nonce,
)
from humanmine.tokens.ledger import (
    FungibleTokenLedger,
    TransferAuthorization,
    authorization_from_json,
    treasury_balance,
)
from humanmine.util.structured_log import log_event

Json = Dict[str, Any]
LedgerStore = Union[SqliteLedgerStore, MemoryLedgerStore]
Event = Union[SessionOpened, SessionFinished]

log = logging.getLogger("humanmine.executor")


def _now_s() -> int:
    return int(time.time())


@dataclass
class TxResult:
    ok: bool
    tx_type: str
    result: Json = field(default_factory=dict)
    error: Optional[Json] = None

    def to_json(self) -> Json:
        out: Json = {"ok": self.ok, "tx_type": self.tx_type, "result": self.result}
        if self.error is not None:
            out["error"] = self.error
        return out


class ExecutorError(RuntimeError):
    pass


def _payload_amount(p: Json) -> int:
    v = p.get("amount")
    if isinstance(v, bool) or not isinstance(v, (int, str)):
        raise InvalidEnvelope("bad_amount", {"amount": repr(v)})
    try:
        return int(v)
    except ValueError:
        raise InvalidEnvelope("bad_amount", {"amount": repr(v)})


class MiningExecutor:
    """Serialized, atomic execution of mining operations against one ledger store.

    Every call:
      - takes the process lock, then a store write transaction
      - reads the current snapshot (no state is cached between calls)
      - runs the apply function on the transaction's copy
      - commits only if nothing raised; otherwise nothing is persisted

    External token movement happens inside the transaction, after every ledger
    mutation, so a failed transfer rolls the whole operation back.

    The reverse is not covered: if the commit itself fails after the transfer
    succeeded, tokens have moved but the ledger rolls back, and a retry would move
    them again. That case is logged as `commit_failed_after_transfer` and must be
    reconciled against the token ledger before retrying.
    """

    def __init__(
        self,
        *,
        store: LedgerStore,
        verifier: IdentityProofVerifier,
        spend_token: FungibleTokenLedger,
        reward_token: FungibleTokenLedger,
        engine_address: str,
        scope: ProofScope,
        admin_address: str,
        genesis_config: Optional[GameConfig] = None,
        chain_id: Optional[str] = None,
        clock: Callable[[], int] = _now_s,
    ) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._clock = clock
        self.chain_id = chain_id
        self.engine_address = str(engine_address).strip().lower()
        if not self.engine_address:
            raise ExecutorError("engine_address must be a non-empty string")

        self.ctx = SessionContext(
            verifier=verifier,
            spend_token=spend_token,
            reward_token=reward_token,
            engine_address=self.engine_address,
            scope=scope,
        )
        self._listeners: List[Callable[[Event], None]] = []

        if not self._store.exists():
            self._store.write(initial_state(admin=str(admin_address).strip().lower(), config=genesis_config or GameConfig()))
            log_event(log, "ledger_initialized", admin=str(admin_address), engine=self.engine_address)

        # Fail-closed if the persisted aggregate does not match the records.
        check_pool_consistency(self._store.read())

    # ----------------------------
    # Plumbing
    # ----------------------------

    def now(self) -> int:
        return int(self._clock())

    def subscribe(self, fn: Callable[[Event], None]) -> None:
        self._listeners.append(fn)

    def _run(self, op: str, fn: Callable[[Json], Any]) -> Any:
        applied: List[bool] = []

        def _tracked(st: Json) -> Any:
            out = fn(st)
            applied.append(True)
            return out

        with self._lock:
            try:
                return self._store.update(_tracked)
            except MiningError as e:
                log_event(log, "tx_rejected", level=logging.WARNING, op=op, **e.to_json())
                raise
            except Exception as e:
                if applied:
                    # Tokens already moved; the ledger did not record it.
                    log_event(
                        log,
                        "commit_failed_after_transfer",
                        level=logging.ERROR,
                        op=op,
                        error=f"{type(e).__name__}: {e}",
                    )
                raise

    def _emit(self, ev: Event) -> None:
        log_event(log, ev.to_json()["event"], **{k: v for k, v in ev.to_json().items() if k != "event"})
        for fn in list(self._listeners):
            try:
                fn(ev)
            except Exception:
                log.exception("event listener failed")

    def read_state(self) -> Json:
        return self._store.read()

    # ----------------------------
    # Session operations
    # ----------------------------

    def open_session(
        self,
        *,
        caller: str,
        amount: int,
        proof: IdentityProof,
        referral: Optional[str] = None,
        authorization: Optional[TransferAuthorization] = None,
    ) -> SessionOpened:
        now_s = self.now()
        ev = self._run(
            "open_session",
            lambda st: apply_open_session(
                st,
                self.ctx,
                caller=caller,
                amount=amount,
                proof=proof,
                referral=referral,
                authorization=authorization,
                now_s=now_s,
            ),
        )
        self._emit(ev)
        return ev

    def close_session(self, *, caller: str) -> SessionFinished:
        now_s = self.now()
        ev = self._run("close_session", lambda st: apply_close_session(st, self.ctx, caller=caller, now_s=now_s))
        self._emit(ev)
        return ev

    # ----------------------------
    # Administration
    # ----------------------------

    def update_config(self, *, caller: str, changes: Mapping[str, Any]) -> Json:
        out = self._run("config_set", lambda st: admin.apply_config_update(st, caller=caller, changes=changes))
        log_event(log, "config_updated", caller=caller, **out)
        return out

    def transfer_admin(self, *, caller: str, new_admin: str) -> Json:
        out = self._run("admin_transfer", lambda st: admin.transfer_admin(st, caller=caller, new_admin=new_admin))
        log_event(log, "admin_transferred", **out)
        return out

    def withdraw_surplus(self, *, caller: str, to: str, amount: int) -> Json:
        out = self._run(
            "treasury_withdraw",
            lambda st: admin.withdraw_surplus(
                st,
                caller=caller,
                reward_token=self.ctx.reward_token,
                engine_address=self.engine_address,
                to=to,
                amount=amount,
            ),
        )
        log_event(log, "treasury_withdrawn", caller=caller, **out)
        return out

    # ----------------------------
    # Read-only queries
    # ----------------------------

    def config(self) -> GameConfig:
        return game_config_from_state(self.read_state())

    def pool(self) -> PoolState:
        return get_pool(self.read_state())

    def admin_address(self) -> str:
        return admin.current_admin(self.read_state())

    def session_status(self, caller: str) -> SessionStatus:
        return session_status(self.read_state(), caller, now_s=self.now())

    def referral_status(self, caller: str) -> ReferralStatus:
        return referral_status(self.read_state(), caller)

    def estimate_reward(self, amount: int) -> RewardEstimate:
        return estimate_reward_range(self.config(), amount)

    def reserve(self, total_stake: Optional[int] = None) -> ReserveReport:
        st = self.read_state()
        t = get_pool(st).active_stake if total_stake is None else int(total_stake)
        return reserve_report(
            game_config_from_state(st),
            total_stake=t,
            treasury_balance=treasury_balance(self.ctx.reward_token, self.engine_address),
        )

    def snapshot(self) -> Json:
        st = self.read_state()
        return {
            "admin": admin.current_admin(st),
            "engine_address": self.engine_address,
            "pool": get_pool(st).to_json(),
            "config": game_config_to_json(game_config_from_state(st)),
        }

    # ----------------------------
    # Signed envelopes
    # ----------------------------

    def submit_tx(self, raw: Any) -> TxResult:
        env = TxEnvelope.from_json(raw)
        now_s = self.now()
        emitted: List[Event] = []

        def _apply(st: Json) -> Json:
            admit_envelope(st, env, chain_id=self.chain_id)
            out = self._dispatch(st, env, now_s=now_s, emitted=emitted)
            consume_nonce(st, env)
            return out

        result = self._run(f"tx:{env.tx_type}", _apply)
        for ev in emitted:
            self._emit(ev)
        return TxResult(ok=True, tx_type=env.tx_type, result=result)

    def _dispatch(self, st: Json, env: TxEnvelope, *, now_s: int, emitted: List[Event]) -> Json:
        p = env.payload
        if env.tx_type == TX_SESSION_OPEN:
            amount = _payload_amount(p)
            ev = apply_open_session(
                st,
                self.ctx,
                caller=env.signer,
                amount=amount,
                proof=IdentityProof.from_json(p.get("proof")),
                referral=p.get("referral"),
                authorization=authorization_from_json(p.get("authorization")),
                now_s=now_s,
            )
            emitted.append(ev)
            return ev.to_json()
        if env.tx_type == TX_SESSION_CLOSE:
            ev2 = apply_close_session(st, self.ctx, caller=env.signer, now_s=now_s)
            emitted.append(ev2)
            return ev2.to_json()
        if env.tx_type == TX_CONFIG_SET:
            changes = p.get("changes")
            if not isinstance(changes, dict):
                raise InvalidEnvelope("changes_not_object", {})
            return admin.apply_config_update(st, caller=env.signer, changes=changes)
        if env.tx_type == TX_ADMIN_TRANSFER:
            return admin.transfer_admin(st, caller=env.signer, new_admin=str(p.get("new_admin") or ""))
        if env.tx_type == TX_TREASURY_WITHDRAW:
            amount = _payload_amount(p)
            return admin.withdraw_surplus(
                st,
                caller=env.signer,
                reward_token=self.ctx.reward_token,
                engine_address=self.engine_address,
                to=str(p.get("to") or env.signer),
                amount=amount,
            )
        raise InvalidEnvelope("unsupported_tx_type", {"tx_type": env.tx_type})


__all__ = ["ExecutorError", "LedgerStore", "MiningExecutor", "TxResult"]
