from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PoolError(Exception):
    """Canonical error type for rejected pool operations.

    Raised before any state is committed; the caller decides whether to retry.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidAmount(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("invalid_amount", reason, details)


class PoolFull(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("pool_full", reason, details)


class NotStaker(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("not_staker", reason, details)


class AlreadyStaked(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("already_staked", reason, details)


class StakePeriodActive(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("stake_period_active", reason, details)


class StakePeriodEnded(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("stake_period_ended", reason, details)


class RewardsNotReady(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("rewards_not_ready", reason, details)


class CycleAlreadySealed(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("cycle_already_sealed", reason, details)


class Unauthorized(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("unauthorized", reason, details)


class InsufficientBalance(PoolError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("insufficient_balance", reason, details)


class InvariantViolation(RuntimeError):
    """A broken accounting invariant. This is a defect, never a normal rejection."""
