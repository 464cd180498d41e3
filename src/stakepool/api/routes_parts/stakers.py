from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.errors import ApiError
from stakepool.api.routes_parts.common import _controller, accrual_json

router = APIRouter()

Json = Dict[str, Any]


@router.get("/stakers/{account}")
def get_staker(account: str, request: Request) -> Json:
    rec = _controller(request).get_staker(account)
    if rec is None:
        raise ApiError.not_found("staker_not_found", "no record for account", {"account": account})
    return {"ok": True, "account": account, "staker": rec.to_json()}


@router.get("/stakers/{account}/pending")
def get_pending(account: str, request: Request) -> Json:
    ctl = _controller(request)
    return {"ok": True, "account": account, "block": ctl.clock.height(), "pending": accrual_json(ctl.pending_rewards(account))}
