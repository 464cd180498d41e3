from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import Request

from stakepool.api.errors import ApiError
from stakepool.ledger.rewards import WindowAccrual
from stakepool.ledger.types import PoolState
from stakepool.runtime.controller import ClaimResult, ExitResult, PoolController, RollResult
from stakepool.runtime.pool_boot import PoolRuntime

Json = Dict[str, Any]


def _runtime(request: Request) -> PoolRuntime:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        raise ApiError.internal("not_ready", "pool runtime not attached to app.state", {})
    return rt


def _controller(request: Request, caller: Optional[str] = None) -> PoolController:
    """Resolve the controller; a caller passed here shows up in the request log line."""
    if caller:
        request.state.caller = str(caller)
    return _runtime(request).controller


def _mode(request: Request) -> str:
    rt = getattr(request.app.state, "runtime", None)
    if rt is not None:
        return str(rt.settings.mode).strip().lower()
    return (os.environ.get("STAKEPOOL_MODE") or "prod").strip().lower()


def _fraction_str(v: Any) -> str:
    return f"{v.numerator}/{v.denominator}"


def state_json(st: PoolState) -> Json:
    out = st.to_json()
    out["rounding_residue"] = _fraction_str(st.rounding_residue)
    return out


def exit_json(res: ExitResult) -> Json:
    return {
        "principal": res.principal,
        "penalty": res.penalty,
        "reward": res.reward,
        "payout": res.payout,
        "residue": _fraction_str(res.residue),
    }


def claim_json(res: ClaimResult) -> Json:
    return {"reward": res.reward, "residue": _fraction_str(res.residue), "stake_start_block": res.stake_start_block}


def roll_json(res: RollResult) -> Json:
    return {
        "rolled": res.rolled,
        "current_cycle": res.current_cycle,
        "sealed": res.sealed.to_json() if res.sealed is not None else None,
        "opened": res.opened.to_json() if res.opened is not None else None,
    }


def accrual_json(acc: WindowAccrual) -> Json:
    return {
        "reward": acc.reward,
        "residue": _fraction_str(acc.residue),
        "elapsed_blocks": acc.elapsed_blocks,
        "segments": list(acc.segments),
    }
