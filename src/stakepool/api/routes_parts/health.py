from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.routes_parts.common import _mode

router = APIRouter()

Json = Dict[str, Any]


@router.get("/health")
def health(request: Request) -> Json:
    rt = getattr(request.app.state, "runtime", None)
    out: Json = {"ok": True, "service": "stakepool", "mode": _mode(request), "runtime_attached": rt is not None}
    if rt is not None:
        out["pool_id"] = rt.settings.pool_id
        out["block"] = rt.clock.height()
    return out
