"""In-process pool metrics with Prometheus text exposition.

Counters (exported with a ``_total`` suffix):
  joins, leaves, emergency_withdrawals, claims, cycles_rolled, config_changes
  rewards_paid          reward units transferred to stakers
  penalties_collected   emergency penalty units kept by the pool

Rejections are one labelled family, ``rejections_total{code="..."}``, keyed by
PoolError code.

Gauges mirror the committed PoolState: total_staked, current_cycle,
cycle_start_block, total_rewards_distributed, total_penalties.
"""

from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict

POOL_COUNTERS: Dict[str, str] = {
    "joins": "Stakes opened.",
    "leaves": "Stakes closed through leave.",
    "emergency_withdrawals": "Stakes closed through emergency withdraw.",
    "claims": "Reward claims paid.",
    "cycles_rolled": "Cycles sealed.",
    "config_changes": "Owner config changes committed.",
    "rewards_paid": "Reward units paid to stakers.",
    "penalties_collected": "Emergency penalty units kept by the pool.",
}

POOL_GAUGES: Dict[str, str] = {
    "total_staked": "Principal currently staked.",
    "current_cycle": "Id of the open cycle.",
    "cycle_start_block": "Start block of the open cycle.",
    "total_rewards_distributed": "Lifetime reward units paid.",
    "total_penalties": "Lifetime penalty units kept.",
}

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_rejections: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("STAKEPOOL_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1) -> None:
    if name not in POOL_COUNTERS:
        raise KeyError(f"unknown pool counter: {name!r}")
    v = int(value)
    if v < 0:
        raise ValueError(f"counter {name!r} cannot decrease: {v}")
    with _lock:
        _counters[name] = _counters.get(name, 0) + v


def record_rejection(code: str) -> None:
    c = str(code or "").strip() or "unknown"
    with _lock:
        _rejections[c] = _rejections.get(c, 0) + 1


def observe_pool_state(state: Any) -> None:
    """Copy the gauge fields off a committed PoolState."""
    with _lock:
        for name in POOL_GAUGES:
            _gauges[name] = int(getattr(state, name))


def snapshot() -> dict:
    now = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now,
            "uptime_ms": now - _started_ms,
            "counters": {k: _counters.get(k, 0) for k in POOL_COUNTERS},
            "rejections": dict(_rejections),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _rejections.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "stakepool_", *, pool_id: str = "") -> str:
    """Prometheus exposition text. Every sample carries the pool_id label when one is given."""
    pre = str(prefix or "").strip() or "stakepool_"
    snap = snapshot()
    base = f'pool_id="{pool_id}"' if pool_id else ""

    def _labels(extra: str = "") -> str:
        inner = ",".join(p for p in (base, extra) if p)
        return "{" + inner + "}" if inner else ""

    lines: list[str] = [f"{pre}uptime_ms{_labels()} {int(snap['uptime_ms'])}"]

    for k, v in snap["counters"].items():
        name = f"{pre}{k}_total"
        lines.append(f"# HELP {name} {POOL_COUNTERS[k]}")
        lines.append(f"# TYPE {name} counter")
        lines.append(f"{name}{_labels()} {int(v)}")

    if snap["rejections"]:
        name = f"{pre}rejections_total"
        lines.append(f"# HELP {name} Operations rejected, by error code.")
        lines.append(f"# TYPE {name} counter")
        for code, v in sorted(snap["rejections"].items()):
            label = 'code="%s"' % code
            lines.append(f"{name}{_labels(label)} {int(v)}")

    for k, v in snap["gauges"].items():
        name = f"{pre}{k}"
        lines.append(f"# HELP {name} {POOL_GAUGES[k]}")
        lines.append(f"# TYPE {name} gauge")
        lines.append(f"{name}{_labels()} {int(v)}")

    return "\n".join(lines) + "\n"
