from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.routes_parts.common import _controller
from stakepool.api.schemas import AdminConfigRequest

router = APIRouter()

Json = Dict[str, Any]


@router.post("/admin/config")
def admin_config(request: Request, body: AdminConfigRequest) -> Json:
    """Change one PoolConfig field. Owner only."""
    cfg = _controller(request, body.caller).apply_config_change(body.caller, body.field, body.value)
    return {"ok": True, "config": cfg.to_json()}
