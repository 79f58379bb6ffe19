from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from humanmine.api.errors import install_error_handlers
from humanmine.api.routes import router
from humanmine.api.security import RequestSizeLimitMiddleware
from humanmine.api.structured_logging import RequestLogMiddleware
from humanmine.runtime.executor import MiningExecutor
from humanmine.runtime.executor_boot import build_executor as _build_executor
from humanmine.util.structured_log import configure_structured_logging, log_event

log = logging.getLogger("humanmine.api")


def build_executor() -> MiningExecutor:
    """Build a MiningExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `humanmine.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor()


def create_app(*, executor: Optional[MiningExecutor] = None, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    executor:
      - attach an already-built executor (embedding, tests)
    boot_runtime:
      - True (default): build the executor from runtime config when none is given
      - False: no executor; data routes answer 503 not_ready
    """
    configure_structured_logging()
    mode = os.environ.get("HUMANMINE_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        log_event(log, "api_started", mode=mode, ready=app.state.executor is not None)
        yield
        log_event(log, "api_stopped", mode=mode)

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="humanmine API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="humanmine API", lifespan=_lifespan)

    if executor is not None:
        app.state.executor = executor
    elif boot_runtime:
        app.state.executor = build_executor()
    else:
        app.state.executor = None

    # --- Middleware ---
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    install_error_handlers(app)
    app.include_router(router)
    return app
