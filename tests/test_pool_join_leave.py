from __future__ import annotations

import pytest

from stakepool.runtime.errors import (
    InvalidAmount,
    NotStaker,
    PoolFull,
    RewardsNotReady,
    StakePeriodActive,
    StakePeriodEnded,
    Unauthorized,
)


@pytest.mark.parametrize("amount", [0, -5, 50, True, 1.5, "100"])
def test_join_rejects_bad_amounts(make_pool, amount) -> None:
    pool = make_pool(minimum_stake=100, balances={"A": 1000})
    with pytest.raises(InvalidAmount) as ei:
        pool.ctl.join("A", amount)
    assert ei.value.code == "invalid_amount"
    assert pool.ctl.get_staker("A") is None
    assert pool.bank.balance("A") == 1000


def test_join_on_inactive_pool_is_rejected_after_amount_check(make_pool) -> None:
    pool = make_pool(balances={"A": 1000})
    pool.ctl.set_active("admin", False)

    with pytest.raises(InvalidAmount):
        pool.ctl.join("A", 0)
    with pytest.raises(StakePeriodEnded) as ei:
        pool.ctl.join("A", 100)
    assert ei.value.code == "stake_period_ended"


def test_capacity_boundary_is_inclusive(make_pool) -> None:
    pool = make_pool(capacity=1000, balances={"A": 600, "B": 400, "C": 1})
    pool.ctl.join("A", 600)
    pool.ctl.join("B", 400)
    assert pool.ctl.get_pool_state().total_staked == 1000

    with pytest.raises(PoolFull) as ei:
        pool.ctl.join("C", 1)
    assert ei.value.code == "pool_full"
    assert ei.value.details["capacity"] == 1000


def test_pool_account_and_blank_caller_cannot_join(make_pool) -> None:
    pool = make_pool()
    with pytest.raises(Unauthorized):
        pool.ctl.join("POOL", 10)
    with pytest.raises(Unauthorized):
        pool.ctl.join("  ", 10)


def test_leave_without_lock_returns_principal_and_reward(make_pool) -> None:
    pool = make_pool(balances={"A": 100})
    pool.ctl.join("A", 100)
    assert pool.bank.balance("A") == 0

    pool.clock.set(3)
    res = pool.ctl.leave("A")
    assert (res.principal, res.penalty, res.reward, res.payout) == (100, 0, 30, 130)
    assert pool.bank.balance("A") == 130

    rec = pool.ctl.get_staker("A")
    assert rec.active is False
    assert rec.staked_amount == 0
    assert rec.stake_start_block == 0
    assert pool.ctl.get_pool_state().total_staked == 0


def test_leave_with_lock_waits_for_unlock_block(make_pool) -> None:
    pool = make_pool(minimum_lock_period=20, balances={"A": 100})
    pool.ctl.join("A", 100)

    pool.clock.set(19)
    with pytest.raises(StakePeriodActive) as ei:
        pool.ctl.leave("A")
    assert ei.value.details == {"block": 19, "unlock_block": 20}
    assert pool.ctl.get_staker("A").active is True

    pool.clock.set(20)
    assert pool.ctl.leave("A").principal == 100


def test_claim_restarts_the_lock_window(make_pool) -> None:
    pool = make_pool(minimum_lock_period=5, balances={"A": 100})
    pool.ctl.join("A", 100)

    pool.clock.set(5)
    assert pool.ctl.claim_rewards("A").reward == 50

    pool.clock.set(7)
    with pytest.raises(StakePeriodActive):
        pool.ctl.leave("A")


def test_operations_without_an_active_stake_raise_not_staker(make_pool) -> None:
    pool = make_pool(balances={"A": 100})
    for op in (pool.ctl.leave, pool.ctl.claim_rewards, pool.ctl.emergency_withdraw):
        with pytest.raises(NotStaker):
            op("nobody")

    pool.ctl.join("A", 100)
    pool.ctl.leave("A")
    with pytest.raises(NotStaker):
        pool.ctl.leave("A")


def test_claim_with_nothing_accrued_is_not_ready(make_pool) -> None:
    pool = make_pool(balances={"A": 100, "B": 100})
    pool.ctl.join("A", 100)
    with pytest.raises(RewardsNotReady) as ei:
        pool.ctl.claim_rewards("A")
    assert ei.value.code == "rewards_not_ready"

    zero_rate = make_pool(reward_rate_per_block=0, balances={"B": 100})
    zero_rate.ctl.join("B", 100)
    zero_rate.clock.set(9)
    with pytest.raises(RewardsNotReady):
        zero_rate.ctl.claim_rewards("B")


def test_rejoin_keeps_lifetime_totals(make_pool) -> None:
    pool = make_pool(balances={"A": 100})
    pool.ctl.join("A", 100)
    pool.clock.set(4)
    assert pool.ctl.leave("A").reward == 40

    rec = pool.ctl.join("A", 100)
    assert rec.active is True
    assert rec.rewards_claimed == 40
    assert rec.stake_start_block == 4
    assert rec.cycle_joined == 1


def test_pending_rewards_is_read_only(make_pool) -> None:
    pool = make_pool(balances={"A": 100})
    assert pool.ctl.pending_rewards("ghost").reward == 0

    pool.ctl.join("A", 100)
    pool.clock.set(6)
    assert pool.ctl.pending_rewards("A").reward == 60
    assert pool.ctl.pending_rewards("A").reward == 60
    assert pool.ctl.get_staker("A").rewards_claimed == 0
