"""stakepool.ledger.types

Plain data records for the pool ledger.

This module defines:
  - StakerRecord: one per account, created on first join, never deleted
  - CycleRecord: one per cycle id, immutable once sealed
  - PoolState: pool-wide aggregates (singleton)
  - PoolConfig: administrator-mutable parameters (singleton)

Every record round-trips through a JSON object (``to_json``/``from_json``) so
the SQLite store can persist it as canonical JSON. Decoding is strict: a
malformed persisted record is a schema error, not something to coerce silently.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from fractions import Fraction
from typing import Any, Dict

from stakepool.ledger.constants import ATTRIBUTION_MODES, ATTRIBUTION_SEALED, POOL_ACCOUNT_ID

Json = Dict[str, Any]


def _coerce_int(v: Any, *, field: str) -> int:
    try:
        # bool is an int subclass; disallow it explicitly
        if isinstance(v, bool):
            raise ValueError("bool is not a valid int")
        return int(v)
    except Exception as e:
        raise ValueError(f"pool schema error: field '{field}' must be int-coercible (got {type(v).__name__})") from e


def _coerce_str(v: Any, *, field: str) -> str:
    if v is None:
        return ""
    if not isinstance(v, str):
        raise ValueError(f"pool schema error: field '{field}' must be str (got {type(v).__name__})")
    return v


def _require_boolish(v: Any, *, field: str) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)) and v in (0, 1):
        return bool(v)
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"1", "true", "yes", "y", "on"}:
            return True
        if s in {"0", "false", "no", "n", "off"}:
            return False
    raise ValueError(f"pool schema error: field '{field}' must be bool-ish (got {type(v).__name__})")


def _require_dict(v: Any, *, what: str) -> Json:
    if not isinstance(v, dict):
        raise ValueError(f"pool schema error: {what} must be a JSON object (got {type(v).__name__})")
    return v


@dataclass
class StakerRecord:
    staked_amount: int = 0
    stake_start_block: int = 0
    cycle_joined: int = 0
    rewards_claimed: int = 0
    active: bool = False
    penalties_paid: int = 0

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, raw: Any) -> "StakerRecord":
        d = _require_dict(raw, what="staker record")
        return cls(
            staked_amount=_coerce_int(d.get("staked_amount", 0), field="staked_amount"),
            stake_start_block=_coerce_int(d.get("stake_start_block", 0), field="stake_start_block"),
            cycle_joined=_coerce_int(d.get("cycle_joined", 0), field="cycle_joined"),
            rewards_claimed=_coerce_int(d.get("rewards_claimed", 0), field="rewards_claimed"),
            active=_require_boolish(d.get("active", False), field="active"),
            penalties_paid=_coerce_int(d.get("penalties_paid", 0), field="penalties_paid"),
        )


@dataclass
class CycleRecord:
    cycle_id: int
    start_block: int
    end_block: int
    # Snapshots of the config in force when the cycle was opened.
    cycle_length: int
    reward_rate_per_block: int
    total_staked: int = 0
    total_rewards: int = 0
    complete: bool = False

    @classmethod
    def open(cls, *, cycle_id: int, start_block: int, cycle_length: int, reward_rate_per_block: int) -> "CycleRecord":
        return cls(
            cycle_id=int(cycle_id),
            start_block=int(start_block),
            end_block=int(start_block) + int(cycle_length) - 1,
            cycle_length=int(cycle_length),
            reward_rate_per_block=int(reward_rate_per_block),
        )

    @property
    def boundary_block(self) -> int:
        """First block height that belongs to the next cycle."""
        return int(self.end_block) + 1

    @property
    def budget(self) -> int:
        return int(self.cycle_length) * int(self.reward_rate_per_block)

    def contains(self, height: int) -> bool:
        return int(self.start_block) <= int(height) <= int(self.end_block)

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, raw: Any) -> "CycleRecord":
        d = _require_dict(raw, what="cycle record")
        return cls(
            cycle_id=_coerce_int(d.get("cycle_id"), field="cycle_id"),
            start_block=_coerce_int(d.get("start_block"), field="start_block"),
            end_block=_coerce_int(d.get("end_block"), field="end_block"),
            cycle_length=_coerce_int(d.get("cycle_length"), field="cycle_length"),
            reward_rate_per_block=_coerce_int(d.get("reward_rate_per_block"), field="reward_rate_per_block"),
            total_staked=_coerce_int(d.get("total_staked", 0), field="total_staked"),
            total_rewards=_coerce_int(d.get("total_rewards", 0), field="total_rewards"),
            complete=_require_boolish(d.get("complete", False), field="complete"),
        )


@dataclass
class PoolState:
    total_staked: int = 0
    total_rewards_distributed: int = 0
    current_cycle: int = 0
    cycle_start_block: int = 0
    total_penalties: int = 0
    # Exact rational residue from floor division, kept as a reduced fraction.
    residue_num: int = 0
    residue_den: int = 1

    @property
    def rounding_residue(self) -> Fraction:
        return Fraction(int(self.residue_num), int(self.residue_den))

    def add_residue(self, amount: Fraction) -> Fraction:
        total = self.rounding_residue + Fraction(amount)
        self.residue_num = int(total.numerator)
        self.residue_den = int(total.denominator)
        return total

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, raw: Any) -> "PoolState":
        d = _require_dict(raw, what="pool state")
        den = _coerce_int(d.get("residue_den", 1), field="residue_den")
        if den <= 0:
            raise ValueError("pool schema error: field 'residue_den' must be > 0")
        return cls(
            total_staked=_coerce_int(d.get("total_staked", 0), field="total_staked"),
            total_rewards_distributed=_coerce_int(
                d.get("total_rewards_distributed", 0), field="total_rewards_distributed"
            ),
            current_cycle=_coerce_int(d.get("current_cycle", 0), field="current_cycle"),
            cycle_start_block=_coerce_int(d.get("cycle_start_block", 0), field="cycle_start_block"),
            total_penalties=_coerce_int(d.get("total_penalties", 0), field="total_penalties"),
            residue_num=_coerce_int(d.get("residue_num", 0), field="residue_num"),
            residue_den=den,
        )


@dataclass
class PoolConfig:
    owner: str
    capacity: int
    minimum_stake: int
    cycle_length: int
    reward_rate_per_block: int
    active: bool = True
    minimum_lock_period: int = 0
    emergency_penalty_bps: int = 0
    attribution: str = ATTRIBUTION_SEALED
    pool_account: str = POOL_ACCOUNT_ID

    def to_json(self) -> Json:
        return asdict(self)

    @classmethod
    def from_json(cls, raw: Any) -> "PoolConfig":
        d = _require_dict(raw, what="pool config")
        attribution = _coerce_str(d.get("attribution", ATTRIBUTION_SEALED), field="attribution")
        if attribution not in ATTRIBUTION_MODES:
            raise ValueError(f"pool schema error: attribution must be one of {ATTRIBUTION_MODES}; got {attribution!r}")
        return cls(
            owner=_coerce_str(d.get("owner"), field="owner"),
            capacity=_coerce_int(d.get("capacity"), field="capacity"),
            minimum_stake=_coerce_int(d.get("minimum_stake"), field="minimum_stake"),
            cycle_length=_coerce_int(d.get("cycle_length"), field="cycle_length"),
            reward_rate_per_block=_coerce_int(d.get("reward_rate_per_block"), field="reward_rate_per_block"),
            active=_require_boolish(d.get("active", True), field="active"),
            minimum_lock_period=_coerce_int(d.get("minimum_lock_period", 0), field="minimum_lock_period"),
            emergency_penalty_bps=_coerce_int(d.get("emergency_penalty_bps", 0), field="emergency_penalty_bps"),
            attribution=attribution,
            pool_account=_coerce_str(d.get("pool_account", POOL_ACCOUNT_ID), field="pool_account") or POOL_ACCOUNT_ID,
        )
