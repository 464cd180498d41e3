from __future__ import annotations

import pytest

from stakepool.ledger.types import CycleRecord, PoolState, StakerRecord
from stakepool.runtime.errors import InsufficientBalance, InvariantViolation
from stakepool.runtime.state_invariants import check_cycles, check_pool_invariants, check_total_staked


def test_join_rolls_back_when_caller_cannot_pay(make_pool) -> None:
    pool = make_pool(balances={"A": 50})
    with pytest.raises(InsufficientBalance) as ei:
        pool.ctl.join("A", 100)
    assert ei.value.code == "insufficient_balance"

    assert pool.ctl.get_staker("A") is None
    assert pool.ctl.get_pool_state().total_staked == 0
    assert pool.bank.balance("A") == 50


def test_claim_rolls_back_when_pool_cannot_pay(make_pool) -> None:
    pool = make_pool(pool_reserve=0, balances={"A": 100})
    pool.ctl.join("A", 100)
    assert pool.bank.balance("POOL") == 100

    # 20 blocks at rate 10 owes 200; the pool only holds the principal.
    pool.clock.set(20)
    with pytest.raises(InsufficientBalance):
        pool.ctl.claim_rewards("A")

    rec = pool.ctl.get_staker("A")
    assert rec.stake_start_block == 0
    assert rec.rewards_claimed == 0
    st = pool.ctl.get_pool_state()
    assert st.total_rewards_distributed == 0
    assert st.rounding_residue == 0
    assert pool.bank.balance("POOL") == 100

    with pytest.raises(InsufficientBalance):
        pool.ctl.leave("A")
    assert pool.ctl.get_staker("A").active is True
    assert pool.ctl.get_pool_state().total_staked == 100


def test_induced_drift_is_detected_and_blocks_commits(make_pool) -> None:
    pool = make_pool(balances={"A": 100})
    with pool.store.unit_of_work() as uow:
        uow.state.total_staked += 5

    with pool.store.read_view() as view:
        with pytest.raises(InvariantViolation):
            check_pool_invariants(view)

    with pytest.raises(InvariantViolation):
        pool.ctl.join("A", 100)
    assert pool.ctl.get_staker("A") is None
    assert pool.bank.balance("A") == 100


def test_invariant_checker_flags_bad_records() -> None:
    st = PoolState(total_staked=10, current_cycle=1)
    with pytest.raises(InvariantViolation):
        check_total_staked(st, [("A", StakerRecord(staked_amount=5, active=False))])
    with pytest.raises(InvariantViolation):
        check_total_staked(st, [("A", StakerRecord(staked_amount=0, active=True))])
    check_total_staked(st, [("A", StakerRecord(staked_amount=10, active=True))])

    c1 = CycleRecord.open(cycle_id=1, start_block=0, cycle_length=10, reward_rate_per_block=1)
    c3 = CycleRecord.open(cycle_id=3, start_block=10, cycle_length=10, reward_rate_per_block=1)
    c1.complete = True
    with pytest.raises(InvariantViolation):
        check_cycles(PoolState(current_cycle=3, cycle_start_block=10), [c1, c3])
