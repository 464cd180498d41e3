from __future__ import annotations

from fastapi import APIRouter, Request, Response

from stakepool.api.errors import ApiError
from stakepool.runtime.metrics import format_prometheus, metrics_enabled, observe_pool_state

router = APIRouter()


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Pool counters and gauges in Prometheus text format.

    Off unless STAKEPOOL_METRICS_ENABLED=1. Gauges are re-read from the store on
    each scrape, so a restarted node reports its persisted totals before any
    operation has run.
    """
    if not metrics_enabled():
        raise ApiError.not_found("metrics_disabled", "set STAKEPOOL_METRICS_ENABLED=1", {})

    pool_id = ""
    rt = getattr(request.app.state, "runtime", None)
    if rt is not None:
        pool_id = str(rt.settings.pool_id)
        observe_pool_state(rt.controller.get_pool_state())
    return Response(content=format_prometheus(pool_id=pool_id), media_type="text/plain; version=0.0.4")
