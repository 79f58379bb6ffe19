from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from humanmine.errors import (
    KIND_AUTH,
    KIND_CAPACITY,
    KIND_CONFIG,
    KIND_EXTERNAL,
    KIND_INPUT,
    KIND_INTERNAL,
    MiningError,
)


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_ready(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def from_mining_error(e: MiningError) -> "ApiError":
        status = _STATUS_BY_KIND.get(e.kind, 500)
        details = dict(e.details or {})
        details["kind"] = e.kind
        return ApiError(status, e.code, e.reason, details)


# Capacity errors are "retry later"; input errors are "fix the request".
_STATUS_BY_KIND = {
    KIND_INPUT: 400,
    KIND_CONFIG: 400,
    KIND_AUTH: 403,
    KIND_CAPACITY: 409,
    KIND_EXTERNAL: 502,
    KIND_INTERNAL: 500,
}


def _error_response(err: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=err.status_code,
        content={"ok": False, "error": {"code": err.code, "message": err.message, "details": err.details}},
    )


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(MiningError)
    async def _mining_error(_request: Request, exc: MiningError) -> JSONResponse:
        return _error_response(ApiError.from_mining_error(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errs = [{"loc": list(e.get("loc", ())), "msg": str(e.get("msg", ""))} for e in exc.errors()]
        return _error_response(ApiError.bad_request("bad_request", "request validation failed", {"errors": errs}))
