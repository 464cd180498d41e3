# src/stakepool/runtime/controller.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Callable, Dict, Iterator, List, Optional

from stakepool.ledger.constants import ATTRIBUTION_MODES, BPS_DENOMINATOR
from stakepool.ledger.rewards import WindowAccrual, accrue_window, penalty_for
from stakepool.ledger.types import CycleRecord, PoolConfig, PoolState, StakerRecord
from stakepool.runtime.clock import BlockClock
from stakepool.runtime.errors import (
    AlreadyStaked,
    InsufficientBalance,
    InvalidAmount,
    InvariantViolation,
    NotStaker,
    PoolError,
    PoolFull,
    RewardsNotReady,
    StakePeriodActive,
    StakePeriodEnded,
    Unauthorized,
)
from stakepool.runtime.metrics import inc_counter, observe_pool_state, record_rejection
from stakepool.runtime.pool_logging import log_event
from stakepool.runtime.sqlite_db import PoolUnitOfWork, SqlitePoolStore
from stakepool.runtime.state_invariants import check_pool_invariants, invariant_checks_enabled
from stakepool.runtime.transfer import ValueTransfer

Json = Dict[str, Any]


@dataclass(frozen=True)
class ExitResult:
    principal: int
    penalty: int
    reward: int
    payout: int
    residue: Fraction


@dataclass(frozen=True)
class ClaimResult:
    reward: int
    residue: Fraction
    stake_start_block: int


@dataclass(frozen=True)
class RollResult:
    rolled: bool
    current_cycle: int
    sealed: Optional[CycleRecord] = None
    opened: Optional[CycleRecord] = None


def _require_caller(caller: Any) -> str:
    c = caller.strip() if isinstance(caller, str) else ""
    if not c:
        raise Unauthorized("missing_caller", {})
    return c


def _require_int(v: Any, *, field: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidAmount("not_an_integer", {"field": field, "value": repr(v)})
    return int(v)


class PoolController:
    """Orchestrates every public pool operation.

    Each mutating call is one unit of work: validation, record updates and the
    value transfer all happen inside a single SQLite write transaction. A
    failed validation raises before anything is written; a failed transfer
    raises InsufficientBalance and the transaction rolls back.
    """

    def __init__(self, *, store: SqlitePoolStore, transfer: ValueTransfer, clock: BlockClock, pool_id: str = "") -> None:
        self._store = store
        self._transfer = transfer
        self._clock = clock
        self.pool_id = str(pool_id)
        self._log = logging.getLogger("stakepool.pool")

    @property
    def store(self) -> SqlitePoolStore:
        return self._store

    @property
    def clock(self) -> BlockClock:
        return self._clock

    # ----------------------------
    # Plumbing
    # ----------------------------

    @contextmanager
    def _operation(self, op: str, caller: str) -> Iterator[PoolUnitOfWork]:
        try:
            with self._store.unit_of_work() as uow:
                yield uow
                if invariant_checks_enabled():
                    check_pool_invariants(uow)
                # Value moves last: nothing after this point can reject the operation.
                for src, dst, amount in uow.transfers:
                    self._settle(src, dst, amount)
        except PoolError as e:
            record_rejection(e.code)
            log_event(
                self._log,
                "pool_op_rejected",
                pool_id=self.pool_id,
                op=op,
                caller=caller,
                code=e.code,
                reason=e.reason,
                details=e.details,
            )
            raise

    def _settle(self, src: str, dst: str, amount: int) -> None:
        if not self._transfer.transfer(src, dst, int(amount)):
            raise InsufficientBalance("transfer_failed", {"from": src, "to": dst, "amount": int(amount)})

    def _window_cycles(self, uow: PoolUnitOfWork, record: StakerRecord) -> List[CycleRecord]:
        first = uow.cycles.find_containing(record.stake_start_block)
        first_id = first.cycle_id if first is not None else (record.cycle_joined or uow.state.current_cycle)
        return uow.cycles.range(first_id, uow.state.current_cycle)

    def _accrue(self, uow: PoolUnitOfWork, record: StakerRecord, now: int) -> WindowAccrual:
        return accrue_window(
            record,
            current_block=now,
            cycles=self._window_cycles(uow, record),
            running_total=uow.state.total_staked,
            attribution=uow.config.attribution,
        )

    def _log_residue(self, accrual: WindowAccrual, total: Fraction, *, account: str) -> None:
        if accrual.residue <= 0:
            return
        log_event(
            self._log,
            "rounding_residue",
            pool_id=self.pool_id,
            account=account,
            residue=accrual.residue,
            residue_total=total,
        )

    def _active_record(self, uow: PoolUnitOfWork, caller: str) -> StakerRecord:
        rec = uow.stakers.get(caller)
        if rec is None or not rec.active:
            raise NotStaker("no_active_stake", {"account": caller})
        return rec

    # ----------------------------
    # Staker operations
    # ----------------------------

    def join(self, caller: str, amount: int) -> StakerRecord:
        who = _require_caller(caller)
        amt = _require_int(amount, field="amount")
        now = self._clock.height()

        with self._operation("join", who) as uow:
            cfg = uow.config
            if amt <= 0 or amt < int(cfg.minimum_stake):
                raise InvalidAmount("below_minimum_stake", {"amount": amt, "minimum_stake": cfg.minimum_stake})
            if not cfg.active:
                raise StakePeriodEnded("pool_inactive", {})
            if who == cfg.pool_account:
                raise Unauthorized("pool_account_cannot_stake", {"account": who})

            prev = uow.stakers.get(who)
            if prev is not None and prev.active:
                raise AlreadyStaked("active_stake_exists", {"account": who, "staked_amount": prev.staked_amount})

            if uow.state.total_staked + amt > int(cfg.capacity):
                raise PoolFull(
                    "capacity_exceeded",
                    {"amount": amt, "total_staked": uow.state.total_staked, "capacity": cfg.capacity},
                )

            rec = StakerRecord(
                staked_amount=amt,
                stake_start_block=now,
                cycle_joined=uow.state.current_cycle,
                rewards_claimed=prev.rewards_claimed if prev is not None else 0,
                active=True,
                penalties_paid=prev.penalties_paid if prev is not None else 0,
            )
            uow.stakers.upsert(who, rec)
            uow.state.total_staked += amt

            uow.transfers.append((who, cfg.pool_account, amt))

        inc_counter("joins")
        observe_pool_state(uow.state)
        log_event(
            self._log,
            "pool_join",
            pool_id=self.pool_id,
            account=who,
            amount=amt,
            block=now,
            cycle=rec.cycle_joined,
            total_staked=uow.state.total_staked,
        )
        return rec

    def _exit(self, caller: str, *, emergency: bool) -> ExitResult:
        who = _require_caller(caller)
        op = "emergency_withdraw" if emergency else "leave"
        now = self._clock.height()

        with self._operation(op, who) as uow:
            cfg = uow.config
            rec = self._active_record(uow, who)

            if not emergency:
                unlock_at = rec.stake_start_block + int(cfg.minimum_lock_period)
                if now < unlock_at:
                    raise StakePeriodActive("lock_period_active", {"block": now, "unlock_block": unlock_at})

            accrual = self._accrue(uow, rec, now)
            principal = int(rec.staked_amount)
            penalty = penalty_for(principal, cfg.emergency_penalty_bps, BPS_DENOMINATOR) if emergency else 0
            payout = principal - penalty + accrual.reward

            rec.staked_amount = 0
            rec.stake_start_block = 0
            rec.active = False
            rec.rewards_claimed += accrual.reward
            rec.penalties_paid += penalty
            uow.stakers.upsert(who, rec)

            st = uow.state
            st.total_staked -= principal
            st.total_rewards_distributed += accrual.reward
            st.total_penalties += penalty
            residue_total = st.add_residue(accrual.residue)

            if payout > 0:
                uow.transfers.append((cfg.pool_account, who, payout))

        self._log_residue(accrual, residue_total, account=who)
        inc_counter("emergency_withdrawals" if emergency else "leaves")
        inc_counter("rewards_paid", accrual.reward)
        inc_counter("penalties_collected", penalty)
        observe_pool_state(st)
        log_event(
            self._log,
            f"pool_{op}",
            pool_id=self.pool_id,
            account=who,
            block=now,
            principal=principal,
            penalty=penalty,
            reward=accrual.reward,
            payout=payout,
            total_staked=st.total_staked,
        )
        return ExitResult(principal=principal, penalty=penalty, reward=accrual.reward, payout=payout, residue=accrual.residue)

    def leave(self, caller: str) -> ExitResult:
        return self._exit(caller, emergency=False)

    def emergency_withdraw(self, caller: str) -> ExitResult:
        return self._exit(caller, emergency=True)

    def claim_rewards(self, caller: str) -> ClaimResult:
        who = _require_caller(caller)
        now = self._clock.height()

        with self._operation("claim", who) as uow:
            rec = self._active_record(uow, who)
            accrual = self._accrue(uow, rec, now)
            if accrual.reward <= 0:
                raise RewardsNotReady("zero_reward", {"block": now, "stake_start_block": rec.stake_start_block})

            rec.rewards_claimed += accrual.reward
            rec.stake_start_block = now
            uow.stakers.upsert(who, rec)

            uow.state.total_rewards_distributed += accrual.reward
            residue_total = uow.state.add_residue(accrual.residue)

            uow.transfers.append((uow.config.pool_account, who, accrual.reward))

        self._log_residue(accrual, residue_total, account=who)
        inc_counter("claims")
        inc_counter("rewards_paid", accrual.reward)
        observe_pool_state(uow.state)
        log_event(
            self._log,
            "pool_claim",
            pool_id=self.pool_id,
            account=who,
            block=now,
            reward=accrual.reward,
            segments=accrual.segments,
        )
        return ClaimResult(reward=accrual.reward, residue=accrual.residue, stake_start_block=now)

    # ----------------------------
    # Cycle roll-over
    # ----------------------------

    def roll_cycle(self, caller: Optional[str] = None) -> RollResult:
        """Seal the open cycle and open the next one once its boundary has passed.

        Callable by anyone. A call before the boundary, including a redundant
        second call right after a roll, is a no-op.
        """
        who = str(caller or "").strip()
        now = self._clock.height()

        with self._operation("roll_cycle", who) as uow:
            st = uow.state
            current = uow.cycles.get(st.current_cycle)
            if current is None:
                raise InvariantViolation(f"open cycle {st.current_cycle} is missing")
            if current.complete or now < current.boundary_block:
                return RollResult(rolled=False, current_cycle=st.current_cycle)

            sealed = uow.cycles.seal(current.cycle_id, st.total_staked, current.budget)
            opened = uow.cycles.create(
                sealed.cycle_id + 1,
                sealed.end_block + 1,
                cycle_length=uow.config.cycle_length,
                reward_rate_per_block=uow.config.reward_rate_per_block,
            )
            st.current_cycle = opened.cycle_id
            st.cycle_start_block = opened.start_block

        inc_counter("cycles_rolled")
        observe_pool_state(st)
        log_event(
            self._log,
            "cycle_rolled",
            pool_id=self.pool_id,
            caller=who,
            block=now,
            sealed_cycle=sealed.cycle_id,
            sealed_total_staked=sealed.total_staked,
            sealed_total_rewards=sealed.total_rewards,
            opened_cycle=opened.cycle_id,
            opened_start_block=opened.start_block,
        )
        return RollResult(rolled=True, current_cycle=opened.cycle_id, sealed=sealed, opened=opened)

    def roll_due_cycles(self, caller: Optional[str] = None, *, max_cycles: int = 1_000) -> List[RollResult]:
        """Roll repeatedly until the open cycle's boundary is in the future."""
        out: List[RollResult] = []
        for _ in range(max(0, int(max_cycles))):
            res = self.roll_cycle(caller)
            if not res.rolled:
                break
            out.append(res)
        return out

    # ----------------------------
    # Admin
    # ----------------------------

    def _set_config(self, caller: str, field: str, value: Any, check: Callable[[PoolUnitOfWork, Any], None]) -> PoolConfig:
        who = _require_caller(caller)

        with self._operation(f"set_{field}", who) as uow:
            if who != uow.config.owner:
                raise Unauthorized("owner_only", {"caller": who, "field": field})
            check(uow, value)
            old = getattr(uow.config, field)
            setattr(uow.config, field, value)
            cfg = uow.config

        inc_counter("config_changes")
        log_event(self._log, "config_changed", pool_id=self.pool_id, caller=who, field=field, old=old, new=value)
        return cfg

    def set_capacity(self, caller: str, capacity: int) -> PoolConfig:
        v = _require_int(capacity, field="capacity")

        def check(uow: PoolUnitOfWork, val: int) -> None:
            if val < uow.state.total_staked:
                raise InvalidAmount("below_total_staked", {"capacity": val, "total_staked": uow.state.total_staked})
            if val < uow.config.minimum_stake:
                raise InvalidAmount("below_minimum_stake", {"capacity": val, "minimum_stake": uow.config.minimum_stake})

        return self._set_config(caller, "capacity", v, check)

    def set_cycle_length(self, caller: str, cycle_length: int) -> PoolConfig:
        v = _require_int(cycle_length, field="cycle_length")

        def check(_uow: PoolUnitOfWork, val: int) -> None:
            if val <= 0:
                raise InvalidAmount("cycle_length_must_be_positive", {"cycle_length": val})

        return self._set_config(caller, "cycle_length", v, check)

    def set_reward_rate(self, caller: str, reward_rate_per_block: int) -> PoolConfig:
        v = _require_int(reward_rate_per_block, field="reward_rate_per_block")

        def check(_uow: PoolUnitOfWork, val: int) -> None:
            if val < 0:
                raise InvalidAmount("reward_rate_must_be_non_negative", {"reward_rate_per_block": val})

        return self._set_config(caller, "reward_rate_per_block", v, check)

    def set_active(self, caller: str, active: bool) -> PoolConfig:
        if not isinstance(active, bool):
            raise InvalidAmount("not_a_bool", {"field": "active", "value": repr(active)})
        return self._set_config(caller, "active", active, lambda _uow, _val: None)

    def set_minimum_stake(self, caller: str, minimum_stake: int) -> PoolConfig:
        v = _require_int(minimum_stake, field="minimum_stake")

        def check(uow: PoolUnitOfWork, val: int) -> None:
            if val <= 0 or val > uow.config.capacity:
                raise InvalidAmount("minimum_stake_out_of_range", {"minimum_stake": val, "capacity": uow.config.capacity})

        return self._set_config(caller, "minimum_stake", v, check)

    def set_lock_period(self, caller: str, minimum_lock_period: int) -> PoolConfig:
        v = _require_int(minimum_lock_period, field="minimum_lock_period")

        def check(_uow: PoolUnitOfWork, val: int) -> None:
            if val < 0:
                raise InvalidAmount("lock_period_must_be_non_negative", {"minimum_lock_period": val})

        return self._set_config(caller, "minimum_lock_period", v, check)

    def set_emergency_penalty(self, caller: str, emergency_penalty_bps: int) -> PoolConfig:
        v = _require_int(emergency_penalty_bps, field="emergency_penalty_bps")

        def check(_uow: PoolUnitOfWork, val: int) -> None:
            if not 0 <= val <= BPS_DENOMINATOR:
                raise InvalidAmount("penalty_bps_out_of_range", {"emergency_penalty_bps": val})

        return self._set_config(caller, "emergency_penalty_bps", v, check)

    def set_attribution(self, caller: str, attribution: str) -> PoolConfig:
        def check(_uow: PoolUnitOfWork, val: Any) -> None:
            if val not in ATTRIBUTION_MODES:
                raise InvalidAmount("unknown_attribution", {"attribution": val, "allowed": list(ATTRIBUTION_MODES)})

        return self._set_config(caller, "attribution", attribution, check)

    def transfer_ownership(self, caller: str, new_owner: str) -> PoolConfig:
        def check(uow: PoolUnitOfWork, val: Any) -> None:
            if not isinstance(val, str) or not val.strip():
                raise InvalidAmount("owner_must_be_non_empty", {})
            if val == uow.config.pool_account:
                raise InvalidAmount("owner_cannot_be_pool_account", {"owner": val})

        return self._set_config(caller, "owner", new_owner, check)

    def apply_config_change(self, caller: str, field: str, value: Any) -> PoolConfig:
        """Route a single ``field=value`` change to its admin setter."""
        setters: Dict[str, Callable[[str, Any], PoolConfig]] = {
            "capacity": self.set_capacity,
            "cycle_length": self.set_cycle_length,
            "reward_rate_per_block": self.set_reward_rate,
            "active": self.set_active,
            "minimum_stake": self.set_minimum_stake,
            "minimum_lock_period": self.set_lock_period,
            "emergency_penalty_bps": self.set_emergency_penalty,
            "attribution": self.set_attribution,
            "owner": self.transfer_ownership,
        }
        fn = setters.get(str(field))
        if fn is None:
            raise InvalidAmount("unknown_config_field", {"field": field, "allowed": sorted(setters)})
        return fn(caller, value)

    # ----------------------------
    # Queries
    # ----------------------------

    def get_staker(self, account: str) -> Optional[StakerRecord]:
        with self._store.read_view() as view:
            return view.stakers.get(account)

    def get_cycle(self, cycle_id: int) -> Optional[CycleRecord]:
        with self._store.read_view() as view:
            return view.cycles.get(cycle_id)

    def get_pool_state(self) -> PoolState:
        return self._store.read_state()

    def get_config(self) -> PoolConfig:
        return self._store.read_config()

    def pending_rewards(self, account: str) -> WindowAccrual:
        """Reward ``account`` would receive from a claim at the current block."""
        now = self._clock.height()
        with self._store.read_view() as view:
            rec = view.stakers.get(account)
            if rec is None or not rec.active:
                return WindowAccrual(reward=0, residue=Fraction(0), elapsed_blocks=0)
            return self._accrue(view, rec, now)
