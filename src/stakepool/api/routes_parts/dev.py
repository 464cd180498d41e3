from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.errors import ApiError
from stakepool.api.routes_parts.common import _mode, _runtime
from stakepool.api.schemas import AdvanceBlocksRequest, CreditRequest

router = APIRouter()

Json = Dict[str, Any]


def _require_dev(request: Request):
    if _mode(request) == "prod":
        raise ApiError.forbidden("dev_only", "dev endpoints are disabled in prod mode", {})
    return _runtime(request)


@router.post("/dev/blocks/advance")
def advance_blocks(request: Request, body: AdvanceBlocksRequest) -> Json:
    rt = _require_dev(request)
    advance = getattr(rt.clock, "advance", None)
    if not callable(advance):
        raise ApiError.bad_request("clock_not_manual", "block clock is host-driven", {})
    return {"ok": True, "block": int(advance(body.blocks))}


@router.post("/dev/balances/credit")
def credit_balance(request: Request, body: CreditRequest) -> Json:
    rt = _require_dev(request)
    credit = getattr(rt.transfer, "credit", None)
    if not callable(credit):
        raise ApiError.bad_request("transfer_not_local", "balances are held by the host ledger", {})
    return {"ok": True, "account": body.account, "balance": int(credit(body.account, body.amount))}


@router.get("/dev/balances/{account}")
def get_balance(account: str, request: Request) -> Json:
    rt = _require_dev(request)
    balance = getattr(rt.transfer, "balance", None)
    if not callable(balance):
        raise ApiError.bad_request("transfer_not_local", "balances are held by the host ledger", {})
    return {"ok": True, "account": account, "balance": int(balance(account))}
