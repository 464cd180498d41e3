from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from stakepool.runtime.errors import PoolError

# PoolError codes that do not map to 400.
_POOL_ERROR_STATUS: Dict[str, int] = {
    "unauthorized": 403,
    "not_staker": 404,
    "already_staked": 409,
    "pool_full": 409,
    "insufficient_balance": 402,
}


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
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_pool_error(e: PoolError) -> "ApiError":
        details = e.details if isinstance(e.details, dict) else ({} if e.details is None else {"value": e.details})
        return ApiError(_POOL_ERROR_STATUS.get(e.code, 400), e.code, e.reason, dict(details))

    def body(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}
