# src/stakepool/api/routes_parts/pool.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakepool.api.routes_parts.common import _controller, claim_json, exit_json, roll_json, state_json
from stakepool.api.schemas import CallerRequest, JoinRequest, RollRequest

router = APIRouter()

Json = Dict[str, Any]


@router.get("/pool/state")
def pool_state(request: Request) -> Json:
    ctl = _controller(request)
    return {"ok": True, "block": ctl.clock.height(), "state": state_json(ctl.get_pool_state())}


@router.get("/pool/config")
def pool_config(request: Request) -> Json:
    return {"ok": True, "config": _controller(request).get_config().to_json()}


@router.post("/pool/join")
def pool_join(request: Request, body: JoinRequest) -> Json:
    rec = _controller(request, body.caller).join(body.caller, body.amount)
    return {"ok": True, "staker": rec.to_json()}


@router.post("/pool/leave")
def pool_leave(request: Request, body: CallerRequest) -> Json:
    return {"ok": True, "result": exit_json(_controller(request, body.caller).leave(body.caller))}


@router.post("/pool/emergency-withdraw")
def pool_emergency_withdraw(request: Request, body: CallerRequest) -> Json:
    return {"ok": True, "result": exit_json(_controller(request, body.caller).emergency_withdraw(body.caller))}


@router.post("/pool/claim")
def pool_claim(request: Request, body: CallerRequest) -> Json:
    return {"ok": True, "result": claim_json(_controller(request, body.caller).claim_rewards(body.caller))}


@router.post("/pool/roll")
def pool_roll(request: Request, body: RollRequest) -> Json:
    """Roll the open cycle over. Permissionless; early calls are no-ops."""
    ctl = _controller(request, body.caller)
    if body.catch_up:
        results = ctl.roll_due_cycles(body.caller, max_cycles=body.max_cycles)
        return {
            "ok": True,
            "rolled": len(results),
            "current_cycle": ctl.get_pool_state().current_cycle,
            "results": [roll_json(r) for r in results],
        }
    res = ctl.roll_cycle(body.caller)
    return {"ok": True, "rolled": 1 if res.rolled else 0, "current_cycle": res.current_cycle, "results": [roll_json(res)]}
