from __future__ import annotations

from fractions import Fraction

import pytest

from stakepool.runtime.errors import AlreadyStaked, StakePeriodActive
from stakepool.runtime.state_invariants import check_pool_invariants


def _assert_invariants(pool) -> None:
    with pool.store.read_view() as view:
        check_pool_invariants(view)


def test_sole_staker_collects_the_whole_cycle_budget(make_pool) -> None:
    pool = make_pool(
        genesis_block=100,
        capacity=1_000_000,
        minimum_stake=1_000_000,
        cycle_length=144,
        reward_rate_per_block=1000,
        balances={"A": 1_000_000},
    )
    pool.ctl.join("A", 1_000_000)

    pool.clock.set(244)
    res = pool.ctl.roll_cycle()
    assert res.rolled is True
    assert res.sealed is not None and res.opened is not None
    assert res.sealed.total_rewards == 144_000
    assert res.sealed.total_staked == 1_000_000
    assert res.sealed.end_block == 243
    assert res.opened.start_block == 244

    claim = pool.ctl.claim_rewards("A")
    assert claim.reward == 144_000
    assert claim.residue == 0
    assert pool.bank.balance("A") == 144_000

    st = pool.ctl.get_pool_state()
    assert st.total_rewards_distributed == 144_000
    assert st.rounding_residue == 0
    assert pool.ctl.get_staker("A").stake_start_block == 244
    _assert_invariants(pool)


def test_two_stakers_split_by_share(make_pool) -> None:
    pool = make_pool(
        cycle_length=144,
        reward_rate_per_block=1000,
        balances={"A": 700_000, "B": 300_000},
    )
    value_before = sum(pool.bank.snapshot().values())

    pool.ctl.join("A", 700_000)
    pool.ctl.join("B", 300_000)
    pool.clock.set(144)
    assert pool.ctl.roll_cycle().rolled

    a = pool.ctl.claim_rewards("A")
    b = pool.ctl.claim_rewards("B")
    assert a.reward == 100_800
    assert b.reward == 43_200
    assert a.reward + b.reward == 144 * 1000

    assert sum(pool.bank.snapshot().values()) == value_before
    _assert_invariants(pool)


def test_three_way_split_conserves_budget_with_residue(make_pool) -> None:
    pool = make_pool(cycle_length=10, reward_rate_per_block=10, balances={"A": 1, "B": 1, "C": 1})
    for who in ("A", "B", "C"):
        pool.ctl.join(who, 1)

    pool.clock.set(10)
    sealed = pool.ctl.roll_cycle().sealed
    assert sealed is not None and sealed.total_rewards == 100

    paid = sum(pool.ctl.claim_rewards(who).reward for who in ("A", "B", "C"))
    assert paid == 99

    st = pool.ctl.get_pool_state()
    assert st.rounding_residue == Fraction(1)
    assert st.total_rewards_distributed + st.rounding_residue == sealed.total_rewards


def _sealed_budgets(pool, last_cycle: int) -> int:
    return sum(pool.ctl.get_cycle(i).total_rewards for i in range(1, last_cycle + 1))


@pytest.mark.parametrize("attribution", ["sealed", "prorate"])
def test_later_joiner_across_a_roll_over_conserves_budget(make_pool, attribution: str) -> None:
    pool = make_pool(cycle_length=10, reward_rate_per_block=10, attribution=attribution, balances={"A": 100, "B": 200})
    pool.ctl.join("A", 100)
    pool.clock.set(10)
    pool.ctl.roll_cycle()
    pool.ctl.join("B", 200)
    pool.clock.set(20)
    pool.ctl.roll_cycle()

    a = pool.ctl.claim_rewards("A")
    b = pool.ctl.claim_rewards("B")
    # A: all of cycle 1 plus a third of cycle 2. B: two thirds of cycle 2.
    assert (a.reward, b.reward) == (133, 66)
    assert (a.residue, b.residue) == (Fraction(1, 3), Fraction(2, 3))

    st = pool.ctl.get_pool_state()
    assert st.total_rewards_distributed + st.rounding_residue == _sealed_budgets(pool, 2) == 200
    _assert_invariants(pool)


@pytest.mark.parametrize(
    "attribution, paid, residue",
    [
        ("sealed", {"A": 132, "B": 66}, Fraction(2)),
        ("prorate", {"A": 133, "B": 66}, Fraction(1)),
    ],
)
def test_multi_cycle_window_conserves_budget(make_pool, attribution: str, paid, residue: Fraction) -> None:
    pool = make_pool(cycle_length=10, reward_rate_per_block=10, attribution=attribution, balances={"A": 2, "B": 1})
    pool.ctl.join("A", 2)
    pool.ctl.join("B", 1)

    pool.clock.set(20)
    assert len(pool.ctl.roll_due_cycles()) == 2

    got = {who: pool.ctl.claim_rewards(who).reward for who in ("A", "B")}
    assert got == paid

    st = pool.ctl.get_pool_state()
    assert st.rounding_residue == residue
    assert st.total_rewards_distributed + st.rounding_residue == _sealed_budgets(pool, 2)


def test_emergency_withdraw_inside_lock_pays_principal_minus_penalty(make_pool) -> None:
    pool = make_pool(minimum_lock_period=100, emergency_penalty_bps=1000, balances={"A": 1000})
    pool.ctl.join("A", 1000)
    pool.clock.set(5)

    with pytest.raises(StakePeriodActive):
        pool.ctl.leave("A")

    pending = pool.ctl.pending_rewards("A")
    res = pool.ctl.emergency_withdraw("A")
    assert res.principal == 1000
    assert res.penalty == 100
    assert res.reward == pending.reward == 50
    assert res.payout == 950
    assert pool.bank.balance("A") == 950

    rec = pool.ctl.get_staker("A")
    assert rec is not None
    assert rec.active is False
    assert rec.staked_amount == 0
    assert rec.penalties_paid == 100
    assert rec.rewards_claimed == 50

    st = pool.ctl.get_pool_state()
    assert st.total_staked == 0
    assert st.total_penalties == 100
    _assert_invariants(pool)


def test_second_join_without_exit_is_rejected(make_pool) -> None:
    pool = make_pool(balances={"A": 1000})
    pool.ctl.join("A", 400)

    with pytest.raises(AlreadyStaked) as ei:
        pool.ctl.join("A", 400)
    assert ei.value.code == "already_staked"

    assert pool.ctl.get_pool_state().total_staked == 400
    assert pool.ctl.get_staker("A").staked_amount == 400
    assert pool.bank.balance("A") == 600
