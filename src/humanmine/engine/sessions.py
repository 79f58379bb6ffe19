# src/humanmine/engine/sessions.py
from __future__ import annotations

"""
Session orchestrator: open / close a mining session.

Both apply functions follow the same shape:

  1. checks   - every precondition, in a fixed order, against the state passed in
  2. effects  - ledger + pool mutation
  3. interaction - exactly one external token movement, last

They mutate `state` in place. Atomicity (nothing persisted when any step raises)
is the caller's job: MiningExecutor runs them against a transaction copy.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from humanmine.engine.rewards import (
    RewardBreakdown,
    compute_close_reward,
    is_referral_eligible,
    require_stake_in_bounds,
)
from humanmine.engine.solvency import required_reserve
from humanmine.errors import (
    AlreadyMining,
    CannotReferSelf,
    CooldownNotElapsed,
    InsufficientReserve,
    MiningError,
    ProofInvalid,
    SessionNotOpen,
)
from humanmine.identity.proof import IdentityProof, IdentityProofVerifier, ProofScope, signal_hash
from humanmine.ledger.config import GameConfig, game_config_from_state
from humanmine.ledger.state import (
    SessionRecord,
    StreakRecord,
    clear_session,
    get_pool,
    get_session,
    get_streak,
    pool_admit,
    pool_release,
    put_session,
    put_streak,
    session_for_caller,
    stamp_referred_start,
)
from humanmine.tokens.ledger import (
    FungibleTokenLedger,
    TransferAuthorization,
    collect_stake,
    pay_out,
    treasury_balance,
)

Json = Dict[str, Any]

PHASE_IDLE = "idle"
PHASE_MINING = "mining"
PHASE_CLAIMABLE = "claimable"


@dataclass(frozen=True)
class SessionContext:
    verifier: IdentityProofVerifier
    spend_token: FungibleTokenLedger
    reward_token: FungibleTokenLedger
    engine_address: str
    scope: ProofScope


@dataclass(frozen=True, slots=True)
class SessionOpened:
    caller: str
    referral_target: Optional[str]
    identity: str
    amount: int
    opened_at: int

    def to_json(self) -> Json:
        return {
            "event": "session_opened",
            "caller": self.caller,
            "referral_target": self.referral_target,
            "identity": self.identity,
            "amount": int(self.amount),
            "opened_at": int(self.opened_at),
        }


@dataclass(frozen=True, slots=True)
class SessionFinished:
    caller: str
    referral_target: Optional[str]
    identity: str
    staked_amount: int
    finished_at: int
    reward: RewardBreakdown

    @property
    def total(self) -> int:
        return self.reward.total

    def to_json(self) -> Json:
        out: Json = {
            "event": "session_finished",
            "caller": self.caller,
            "referral_target": self.referral_target,
            "identity": self.identity,
            "staked_amount": int(self.staked_amount),
            "finished_at": int(self.finished_at),
        }
        out.update(self.reward.to_json())
        return out


@dataclass(frozen=True, slots=True)
class SessionStatus:
    caller: str
    phase: str
    identity: Optional[str] = None
    opened_at: int = 0
    unlocks_at: int = 0
    staked_amount: int = 0
    referral_target: Optional[str] = None
    streak_count: int = 0
    last_finished_at: int = 0

    def to_json(self) -> Json:
        return {
            "caller": self.caller,
            "phase": self.phase,
            "identity": self.identity,
            "opened_at": int(self.opened_at),
            "unlocks_at": int(self.unlocks_at),
            "staked_amount": int(self.staked_amount),
            "referral_target": self.referral_target,
            "streak_count": int(self.streak_count),
            "last_finished_at": int(self.last_finished_at),
        }


@dataclass(frozen=True, slots=True)
class ReferralStatus:
    caller: str
    referral_target: Optional[str]
    target_opened_at: int
    eligible: bool

    def to_json(self) -> Json:
        return {
            "caller": self.caller,
            "referral_target": self.referral_target,
            "target_opened_at": int(self.target_opened_at),
            "eligible": bool(self.eligible),
        }


def _norm_address(v: Any) -> str:
    return v.strip().lower() if isinstance(v, str) else ""


def _require_caller(caller: Any) -> str:
    c = _norm_address(caller)
    if not c:
        raise MiningError("InvalidCaller", "missing_caller", {})
    return c


def _verify_proof(ctx: SessionContext, *, caller: str, proof: IdentityProof) -> None:
    try:
        ctx.verifier.verify(
            proof.root,
            ctx.scope.group_id,
            signal_hash(caller),
            proof.nullifier_hash,
            ctx.scope.external_nullifier,
            list(proof.proof),
        )
    except MiningError:
        raise
    except Exception as e:
        raise ProofInvalid("verifier_error", {"error": f"{type(e).__name__}: {e}"}) from e


def apply_open_session(
    state: Json,
    ctx: SessionContext,
    *,
    caller: str,
    amount: int,
    proof: IdentityProof,
    now_s: int,
    referral: Optional[str] = None,
    authorization: Optional[TransferAuthorization] = None,
) -> SessionOpened:
    caller = _require_caller(caller)
    ref = _norm_address(referral) or None
    amount = int(amount)
    cfg = game_config_from_state(state)
    identity = proof.fingerprint

    # --- checks ---
    if get_session(state, identity) is not None:
        raise AlreadyMining(identity=identity, caller=caller)
    if session_for_caller(state, caller) is not None:
        raise AlreadyMining(identity=identity, caller=caller)

    if ref is not None and ref == caller:
        raise CannotReferSelf(caller=caller)

    require_stake_in_bounds(cfg, amount)

    pool = get_pool(state)
    total_after = pool.active_stake + amount
    required = required_reserve(cfg, total_after)
    available = treasury_balance(ctx.reward_token, ctx.engine_address)
    if available < required:
        raise InsufficientReserve(required=required, available=available, total_stake=total_after)

    _verify_proof(ctx, caller=caller, proof=proof)

    # --- effects ---
    pool_admit(state, amount)
    put_session(
        state,
        SessionRecord(
            identity=identity,
            opened_at=int(now_s),
            staked_amount=amount,
            referral_target=ref,
            caller=caller,
        ),
    )
    stamp_referred_start(state, caller, now_s)

    # --- interaction ---
    collect_stake(
        ctx.spend_token,
        holder=caller,
        engine_address=ctx.engine_address,
        amount=amount,
        authorization=authorization,
    )

    return SessionOpened(
        caller=caller,
        referral_target=ref,
        identity=identity,
        amount=amount,
        opened_at=int(now_s),
    )


def apply_close_session(state: Json, ctx: SessionContext, *, caller: str, now_s: int) -> SessionFinished:
    caller = _require_caller(caller)
    cfg = game_config_from_state(state)

    # --- checks ---
    rec = session_for_caller(state, caller)
    if rec is None:
        raise SessionNotOpen(caller=caller)

    unlocks_at = rec.opened_at + int(cfg.cooldown_s)
    if int(now_s) < unlocks_at:
        raise CooldownNotElapsed(caller=caller, unlocks_at=unlocks_at, now_s=now_s)

    # Level reads the pool before this session is released.
    pool = get_pool(state)
    streak = get_streak(state, caller)
    eligible = is_referral_eligible(
        caller=caller,
        referral_target=rec.referral_target,
        opened_at=rec.opened_at,
        target_opened_at=rec.referral_started_at,
        cooldown_s=cfg.cooldown_s,
    )
    breakdown = compute_close_reward(
        cfg,
        active_sessions=pool.active_sessions,
        staked_amount=rec.staked_amount,
        referral_eligible=eligible,
        last_finished_at=streak.last_finished_at,
        consecutive_count=streak.consecutive_count,
        now_s=now_s,
    )

    # --- effects ---
    pool_release(state, rec.staked_amount)
    clear_session(state, rec)
    put_streak(
        state,
        caller,
        StreakRecord(
            last_finished_at=int(now_s),
            consecutive_count=breakdown.streak_count,
        ),
    )

    # --- interaction ---
    pay_out(ctx.reward_token, to=caller, amount=breakdown.total)

    return SessionFinished(
        caller=caller,
        referral_target=rec.referral_target,
        identity=rec.identity,
        staked_amount=rec.staked_amount,
        finished_at=int(now_s),
        reward=breakdown,
    )


# ----------------------------
# Read-only queries
# ----------------------------


def session_status(state: Json, caller: str, *, now_s: int, cfg: Optional[GameConfig] = None) -> SessionStatus:
    c = _norm_address(caller)
    conf = cfg or game_config_from_state(state)
    streak = get_streak(state, c)
    rec = session_for_caller(state, c) if c else None
    if rec is None:
        return SessionStatus(
            caller=c,
            phase=PHASE_IDLE,
            streak_count=streak.consecutive_count,
            last_finished_at=streak.last_finished_at,
        )
    unlocks_at = rec.opened_at + int(conf.cooldown_s)
    return SessionStatus(
        caller=c,
        phase=PHASE_CLAIMABLE if int(now_s) >= unlocks_at else PHASE_MINING,
        identity=rec.identity,
        opened_at=rec.opened_at,
        unlocks_at=unlocks_at,
        staked_amount=rec.staked_amount,
        referral_target=rec.referral_target,
        streak_count=streak.consecutive_count,
        last_finished_at=streak.last_finished_at,
    )


def referral_status(state: Json, caller: str) -> ReferralStatus:
    """Whether the caller's open session currently qualifies for the referral bonus."""
    c = _norm_address(caller)
    rec: Optional[SessionRecord] = session_for_caller(state, c) if c else None
    if rec is None:
        return ReferralStatus(caller=c, referral_target=None, target_opened_at=0, eligible=False)
    cfg = game_config_from_state(state)
    target_opened_at = rec.referral_started_at
    return ReferralStatus(
        caller=c,
        referral_target=rec.referral_target,
        target_opened_at=target_opened_at,
        eligible=is_referral_eligible(
            caller=c,
            referral_target=rec.referral_target,
            opened_at=rec.opened_at,
            target_opened_at=target_opened_at,
            cooldown_s=cfg.cooldown_s,
        ),
    )


__all__ = [
    "PHASE_CLAIMABLE",
    "PHASE_IDLE",
    "PHASE_MINING",
    "ReferralStatus",
    "SessionContext",
    "SessionFinished",
    "SessionOpened",
    "SessionStatus",
    "apply_close_session",
    "apply_open_session",
    "referral_status",
    "session_status",
]
