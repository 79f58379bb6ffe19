from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request

from humanmine.api.errors import ApiError
from humanmine.api.schemas import TxSubmitRequest
from humanmine.runtime.executor import MiningExecutor

Json = Dict[str, Any]

router = APIRouter(prefix="/v1")


def _executor(request: Request) -> MiningExecutor:
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.not_ready("not_ready", "executor not initialized")
    return ex


@router.get("/health")
def v1_health(request: Request) -> Json:
    ex = getattr(request.app.state, "executor", None)
    return {"ok": True, "service": "humanmine", "ready": ex is not None}


@router.get("/pool")
def v1_pool(request: Request) -> Json:
    return {"ok": True, "pool": _executor(request).pool().to_json()}


@router.get("/config")
def v1_config(request: Request) -> Json:
    ex = _executor(request)
    snap = ex.snapshot()
    return {"ok": True, "admin": snap["admin"], "engine_address": snap["engine_address"], "config": snap["config"]}


@router.get("/sessions/{address}")
def v1_session(address: str, request: Request) -> Json:
    return {"ok": True, "session": _executor(request).session_status(address).to_json()}


@router.get("/referrals/{address}")
def v1_referral(address: str, request: Request) -> Json:
    return {"ok": True, "referral": _executor(request).referral_status(address).to_json()}


@router.get("/rewards/estimate")
def v1_reward_estimate(request: Request, amount: int = Query(..., description="Stake in base units")) -> Json:
    return {"ok": True, "estimate": _executor(request).estimate_reward(amount).to_json()}


@router.get("/reserve")
def v1_reserve(request: Request, total_stake: Optional[int] = Query(None, ge=0)) -> Json:
    return {"ok": True, "reserve": _executor(request).reserve(total_stake).to_json()}


@router.post("/tx")
def v1_submit_tx(body: TxSubmitRequest, request: Request) -> Json:
    res = _executor(request).submit_tx(body.model_dump())
    return res.to_json()


__all__ = ["router"]
