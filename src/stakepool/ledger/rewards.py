# src/stakepool/ledger/rewards.py
from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, List, Sequence

from stakepool.ledger.constants import ATTRIBUTION_PRORATE, ATTRIBUTION_SEALED, SHARE_SCALE
from stakepool.ledger.types import CycleRecord, StakerRecord

Json = Dict[str, Any]


@dataclass
class RewardError(RuntimeError):
    code: str
    reason: str
    details: Json

    def __str__(self) -> str:
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass(frozen=True)
class Accrual:
    reward: int
    remainder: int
    divisor: int
    share_ppm: int
    elapsed_blocks: int

    @property
    def residue(self) -> Fraction:
        if self.divisor <= 0:
            return Fraction(0)
        return Fraction(int(self.remainder), int(self.divisor))


@dataclass(frozen=True)
class WindowAccrual:
    reward: int
    residue: Fraction
    elapsed_blocks: int
    segments: List[Json] = field(default_factory=list)


def accrue(
    record: StakerRecord,
    current_block: int,
    reward_rate_per_block: int,
    total_staked_in_cycle: int,
) -> Accrual:
    """Reward owed to ``record`` for the blocks elapsed since its stake start.

    reward = elapsed * rate * staked // total, multiplied out in full before the
    single floor division. The remainder is returned so the caller can book it
    as rounding residue. Pure: nothing is mutated.
    """
    total = int(total_staked_in_cycle)
    staked = int(record.staked_amount)
    rate = int(reward_rate_per_block)
    elapsed = max(int(current_block) - int(record.stake_start_block), 0)

    if total <= 0 or staked <= 0:
        return Accrual(reward=0, remainder=0, divisor=0, share_ppm=0, elapsed_blocks=elapsed)
    if rate < 0:
        raise RewardError("invalid_rate", "rate_must_be_non_negative", {"rate": rate})

    numerator = elapsed * rate * staked
    return Accrual(
        reward=numerator // total,
        remainder=numerator % total,
        divisor=total,
        share_ppm=(staked * SHARE_SCALE) // total,
        elapsed_blocks=elapsed,
    )


def _divisor_for(cycle: CycleRecord, running_total: int) -> int:
    return int(cycle.total_staked) if cycle.complete else int(running_total)


def _segment_blocks(cycle: CycleRecord, start: int, now: int) -> int:
    seg_start = max(int(start), int(cycle.start_block))
    seg_end = min(int(now), cycle.boundary_block) if cycle.complete else int(now)
    return seg_end - seg_start


def _accrue_sealed(record: StakerRecord, current_block: int, cycles: Sequence[CycleRecord], running_total: int) -> WindowAccrual:
    """Settle each cycle of the window on its own.

    A sealed cycle pays ``blocks * total_rewards * staked // (cycle_length *
    total_staked)`` from its sealed figures; the open cycle pays at its snapshot
    rate over ``running_total``. Each segment is floored on its own and its
    remainder joins the residue.
    """
    start = int(record.stake_start_block)
    now = int(current_block)
    staked = int(record.staked_amount)

    reward = 0
    residue = Fraction(0)
    segments: List[Json] = []
    for c in cycles:
        blocks = _segment_blocks(c, start, now)
        if blocks <= 0:
            continue
        total = _divisor_for(c, running_total)
        if total <= 0:
            continue
        if c.complete:
            numerator = blocks * int(c.total_rewards) * staked
            divisor = int(c.cycle_length) * total
        else:
            numerator = blocks * int(c.reward_rate_per_block) * staked
            divisor = total
        paid = numerator // divisor
        reward += paid
        residue += Fraction(numerator % divisor, divisor)
        segments.append(
            {
                "cycle_id": int(c.cycle_id),
                "blocks": int(blocks),
                "divisor": total,
                "rate": int(c.reward_rate_per_block),
                "share_ppm": (staked * SHARE_SCALE) // total,
                "reward": int(paid),
            }
        )

    return WindowAccrual(reward=reward, residue=residue, elapsed_blocks=max(now - start, 0), segments=segments)


def _accrue_prorate(record: StakerRecord, current_block: int, cycles: Sequence[CycleRecord], running_total: int) -> WindowAccrual:
    start = int(record.stake_start_block)
    now = int(current_block)
    staked = int(record.staked_amount)

    exact = Fraction(0)
    segments: List[Json] = []
    for c in cycles:
        blocks = _segment_blocks(c, start, now)
        if blocks <= 0:
            continue
        divisor = _divisor_for(c, running_total)
        if divisor <= 0:
            continue
        exact += Fraction(blocks * int(c.reward_rate_per_block) * staked, divisor)
        segments.append(
            {
                "cycle_id": int(c.cycle_id),
                "blocks": int(blocks),
                "divisor": int(divisor),
                "rate": int(c.reward_rate_per_block),
                "share_ppm": (staked * SHARE_SCALE) // divisor,
            }
        )

    reward = exact.numerator // exact.denominator
    return WindowAccrual(
        reward=int(reward),
        residue=exact - reward,
        elapsed_blocks=max(now - start, 0),
        segments=segments,
    )


def accrue_window(
    record: StakerRecord,
    *,
    current_block: int,
    cycles: Sequence[CycleRecord],
    running_total: int,
    attribution: str = ATTRIBUTION_SEALED,
) -> WindowAccrual:
    """Accrue over ``[record.stake_start_block, current_block)``.

    ``cycles`` runs from the cycle containing the stake start up to the open
    cycle, in id order. Sealed cycles contribute their sealed figures, the open
    cycle uses ``running_total``. ``sealed`` floors every cycle separately;
    ``prorate`` sums the exact shares and floors once.
    """
    if not record.active or not cycles:
        return WindowAccrual(reward=0, residue=Fraction(0), elapsed_blocks=0)

    if attribution == ATTRIBUTION_SEALED:
        return _accrue_sealed(record, current_block, cycles, running_total)
    if attribution == ATTRIBUTION_PRORATE:
        return _accrue_prorate(record, current_block, cycles, running_total)
    raise RewardError("invalid_attribution", "unknown_attribution_mode", {"attribution": attribution})


def penalty_for(principal: int, penalty_bps: int, denominator: int) -> int:
    """Floor of principal * bps / denominator, clamped to [0, principal]."""
    p = int(principal)
    bps = int(penalty_bps)
    if p <= 0 or bps <= 0:
        return 0
    return min((p * bps) // int(denominator), p)
