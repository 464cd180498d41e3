# src/stakepool/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from stakepool.runtime.pool_logging import log_event


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Send every logger to stdout as bare JSONL lines.

    The level comes from ``level_name`` or STAKEPOOL_LOG_LEVEL (default INFO).
    Calling again only updates the level.
    """
    name = (level_name or os.environ.get("STAKEPOOL_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_stakepool_jsonl", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler._stakepool_jsonl = True  # type: ignore[attr-defined]
    root.handlers = [handler]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One ``http_request`` line per pool API call.

    Each line carries the pool id of the attached runtime and the caller the
    route bound with ``_controller(request, caller)``, so a rejected join can be
    traced from the HTTP line to its ``pool_op_rejected`` event. Responses
    with status 500 or above log at WARNING. The ``x-request-id`` header is
    echoed back, or generated when absent. STAKEPOOL_LOG_REQUESTS=0 turns the
    middleware into a pass-through.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("STAKEPOOL_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "off"}
        self._log = logging.getLogger("stakepool.http")

    @staticmethod
    def _pool_id(request: Request) -> str:
        rt = getattr(request.app.state, "runtime", None)
        return str(rt.settings.pool_id) if rt is not None else ""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        if not self._enabled:
            response = await call_next(request)
            response.headers.setdefault("x-request-id", request_id)
            return response

        started = time.monotonic()
        status = 500
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        finally:
            log_event(
                self._log,
                "http_request",
                level=logging.WARNING if status >= 500 else logging.INFO,
                request_id=request_id,
                pool_id=self._pool_id(request),
                caller=getattr(request.state, "caller", None),
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
