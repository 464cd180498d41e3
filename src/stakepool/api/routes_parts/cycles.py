from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.errors import ApiError
from stakepool.api.routes_parts.common import _controller

router = APIRouter()

Json = Dict[str, Any]


@router.get("/cycles/{cycle_id}")
def get_cycle(cycle_id: int, request: Request) -> Json:
    c = _controller(request).get_cycle(cycle_id)
    if c is None:
        raise ApiError.not_found("cycle_not_found", "no such cycle", {"cycle_id": cycle_id})
    return {"ok": True, "cycle": c.to_json()}
