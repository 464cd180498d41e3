from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from stakepool.api.errors import ApiError
from stakepool.runtime.pool_logging import log_event

# Every pool request body is a handful of small JSON fields.
DEFAULT_MAX_REQUEST_BYTES = 65_536

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def max_request_bytes() -> int:
    raw = (os.environ.get("STAKEPOOL_MAX_REQUEST_BYTES") or "").strip()
    if not raw:
        return DEFAULT_MAX_REQUEST_BYTES
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"STAKEPOOL_MAX_REQUEST_BYTES must be an integer; got {raw!r}") from None


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized pool operation bodies before they reach a route.

    Only body-carrying methods are checked; the pool's GET routes take no body.
    The declared Content-Length is checked first, then the buffered body.
    STAKEPOOL_MAX_REQUEST_BYTES sets the cap; 0 or less turns the check off.
    """

    def __init__(self, app, *, max_bytes: Optional[int] = None) -> None:
        super().__init__(app)
        self._max_bytes = int(max_bytes) if max_bytes is not None else max_request_bytes()
        self._log = logging.getLogger("stakepool.http")

    def _reject(self, request: Request, err: ApiError, size: int) -> JSONResponse:
        log_event(
            self._log,
            "request_rejected",
            path=str(request.url.path or ""),
            code=err.code,
            size=size,
            max_bytes=self._max_bytes,
        )
        return JSONResponse(status_code=err.status_code, content=err.body())

    def _too_large(self, request: Request, size: int) -> JSONResponse:
        err = ApiError(413, "request_too_large", "request body too large", {"max_bytes": self._max_bytes})
        return self._reject(request, err, size)

    async def dispatch(self, request: Request, call_next):
        if self._max_bytes <= 0 or (request.method or "").upper() not in _BODY_METHODS:
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared:
            try:
                size = int(declared)
            except ValueError:
                return self._reject(request, ApiError.bad_request("invalid_content_length", declared, {}), -1)
            if size > self._max_bytes:
                return self._too_large(request, size)

        body = await request.body()
        if len(body) > self._max_bytes:
            return self._too_large(request, len(body))
        return await call_next(request)
