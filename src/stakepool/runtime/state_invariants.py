# src/stakepool/runtime/state_invariants.py
from __future__ import annotations

"""Accounting invariants for the pool ledger.

The checks here are never a normal error path: a failure means an operation
was implemented wrong. Tests call ``check_pool_invariants`` after every step;
the controller also calls it inside each unit of work when
STAKEPOOL_CHECK_INVARIANTS=1, so a drifting commit is rolled back.
"""

import os
from typing import Iterable, Tuple

from stakepool.ledger.types import CycleRecord, PoolConfig, PoolState, StakerRecord
from stakepool.runtime.errors import InvariantViolation


def invariant_checks_enabled() -> bool:
    v = (os.environ.get("STAKEPOOL_CHECK_INVARIANTS") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def check_total_staked(state: PoolState, records: Iterable[Tuple[str, StakerRecord]]) -> None:
    """PoolState.total_staked must equal the sum of active stakes."""
    total = 0
    for account, rec in records:
        if rec.staked_amount < 0:
            raise InvariantViolation(f"negative stake for {account!r}: {rec.staked_amount}")
        if rec.active:
            if rec.staked_amount <= 0:
                raise InvariantViolation(f"active staker {account!r} has no stake")
            total += int(rec.staked_amount)
        elif rec.staked_amount != 0:
            raise InvariantViolation(f"inactive staker {account!r} still holds {rec.staked_amount}")
    if total != int(state.total_staked):
        raise InvariantViolation(f"total_staked drift: state={state.total_staked} records={total}")


def check_capacity(state: PoolState, config: PoolConfig) -> None:
    if int(state.total_staked) > int(config.capacity):
        raise InvariantViolation(f"capacity exceeded: total_staked={state.total_staked} capacity={config.capacity}")


def check_cycles(state: PoolState, cycles: Iterable[CycleRecord]) -> None:
    """Cycle ids are contiguous, ranges abut, and only the current cycle is open."""
    prev: CycleRecord | None = None
    seen_open = False
    for c in cycles:
        if c.end_block != c.start_block + c.cycle_length - 1:
            raise InvariantViolation(f"cycle {c.cycle_id} end_block mismatch")
        if prev is not None:
            if c.cycle_id != prev.cycle_id + 1:
                raise InvariantViolation(f"cycle ids not contiguous: {prev.cycle_id} -> {c.cycle_id}")
            if c.start_block != prev.end_block + 1:
                raise InvariantViolation(f"cycle {c.cycle_id} does not start after cycle {prev.cycle_id}")
            if not prev.complete:
                raise InvariantViolation(f"cycle {prev.cycle_id} open while a later cycle exists")
        if not c.complete:
            if seen_open or c.cycle_id != state.current_cycle:
                raise InvariantViolation(f"unexpected open cycle {c.cycle_id}; current={state.current_cycle}")
            seen_open = True
            if c.start_block != state.cycle_start_block:
                raise InvariantViolation("cycle_start_block does not match the open cycle")
        prev = c
    if prev is not None and not seen_open:
        raise InvariantViolation("no open cycle")


def check_pool_invariants(uow) -> None:
    """Run every check against a PoolUnitOfWork (or read view)."""
    check_total_staked(uow.state, uow.stakers.items())
    check_capacity(uow.state, uow.config)
    check_cycles(uow.state, uow.cycles.range(1, uow.cycles.latest_id()))
    if int(uow.state.total_rewards_distributed) < 0 or uow.state.rounding_residue < 0:
        raise InvariantViolation("negative reward counters")


__all__ = [
    "check_capacity",
    "check_cycles",
    "check_pool_invariants",
    "check_total_staked",
    "invariant_checks_enabled",
]
