from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stakepool.api.errors import ApiError
from stakepool.api.routes import public_router
from stakepool.api.security import RequestSizeLimitMiddleware
from stakepool.api.structured_logging import RequestLogMiddleware
from stakepool.runtime.errors import InvariantViolation, PoolError
from stakepool.runtime.pool_boot import PoolRuntime
from stakepool.runtime.pool_boot import build_runtime as _build_runtime
from stakepool.runtime.pool_config import PoolSettings, load_pool_settings
from stakepool.runtime.pool_logging import log_event


def build_runtime(settings: PoolSettings) -> PoolRuntime:
    """Build the pool runtime for the API.

    This wrapper exists so tests can monkeypatch `stakepool.api.app.build_runtime`
    without reaching into runtime modules.
    """
    return _build_runtime(settings)


def _install_error_handlers(app: FastAPI) -> None:
    log = logging.getLogger("stakepool.http")

    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.body())

    @app.exception_handler(PoolError)
    async def _pool_error(_request: Request, exc: PoolError) -> JSONResponse:
        err = ApiError.from_pool_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.body())

    @app.exception_handler(InvariantViolation)
    async def _invariant(request: Request, exc: InvariantViolation) -> JSONResponse:
        log_event(log, "invariant_violation", path=str(request.url.path or ""), error=str(exc))
        err = ApiError.internal("invariant_violation", str(exc), {})
        return JSONResponse(status_code=err.status_code, content=err.body())


def create_app(*, boot_runtime: bool = True, settings: Optional[PoolSettings] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load PoolSettings, open the SQLite store and attach
        the PoolRuntime to app.state.runtime
      - False: keep lightweight for unit tests / import-time validation
    """
    s: Optional[PoolSettings] = None
    if boot_runtime:
        s = settings or load_pool_settings()
    mode = s.mode if s is not None else os.environ.get("STAKEPOOL_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        rt = getattr(app.state, "runtime", None)
        log_event(
            logging.getLogger("stakepool.http"),
            "api_start",
            mode=mode,
            pool_id=rt.settings.pool_id if rt is not None else None,
        )
        yield
        log_event(logging.getLogger("stakepool.http"), "api_stop", mode=mode)

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="Stake Pool API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="Stake Pool API", lifespan=_lifespan)

    app.state.runtime = build_runtime(s) if s is not None else None

    # --- Middleware ---
    # Request size limiter should be early to fail fast.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    _install_error_handlers(app)

    # --- Routers ---
    app.include_router(public_router)

    return app
