"""
Concurrent operations against one ledger.

Each operation must apply exactly once no matter how threads interleave.
"""
import threading

import pytest

from shieldledger.exceptions import DuplicateClaimError

from conftest import FUNDER, USER, make_ledger

THREADS = 8
ROUNDS = 25


def run_threads(target, count=THREADS):
    errors = []

    def wrapper(index):
        try:
            target(index)
        except Exception as e:  # collected and asserted by the test
            errors.append(e)

    threads = [threading.Thread(target=wrapper, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


@pytest.fixture
def busy_ledger(clock):
    ledger = make_ledger(clock, max_retries=10_000)
    ledger.register_user(FUNDER)
    ledger.stake(FUNDER, 1_000_000)
    return ledger


def test_stake_and_unstake_race(busy_ledger):
    def work(index):
        for _ in range(ROUNDS):
            if index % 2:
                busy_ledger.stake(FUNDER, 7)
            else:
                busy_ledger.unstake(FUNDER, 3)

    assert run_threads(work) == []

    stakers = THREADS // 2
    expected = 1_000_000 + stakers * ROUNDS * 7 - (THREADS - stakers) * ROUNDS * 3
    assert busy_ledger.get_funder_stake(FUNDER) == expected
    assert busy_ledger.get_reserve_info().total_funds == expected
    assert all(busy_ledger.check_invariants().values())


def test_many_funders_stake_concurrently(busy_ledger):
    addresses = [f"0xfunder{i}" for i in range(THREADS)]
    for address in addresses:
        busy_ledger.register_user(address)

    def work(index):
        for _ in range(ROUNDS):
            busy_ledger.stake(addresses[index], 10)

    assert run_threads(work) == []

    reserve = busy_ledger.get_reserve_info()
    assert reserve.total_staked == 1_000_000 + THREADS * ROUNDS * 10
    assert reserve.total_stakers == THREADS + 1


def test_only_one_claim_wins(busy_ledger):
    busy_ledger.register_user(USER)
    policy_id = busy_ledger.create_policy("admin", {
        "coverage_amount": 100, "premium_amount": 10, "payout_amount": 80, "term_days": 30,
    })
    busy_ledger.activate_policy(policy_id)
    busy_ledger.buy_policy(USER, policy_id)

    errors = run_threads(lambda i: busy_ledger.submit_claim(USER, policy_id, f"0xevidence{i}"))

    assert len(errors) == THREADS - 1
    assert all(isinstance(e, DuplicateClaimError) for e in errors)
    assert len(busy_ledger.get_user_claims(USER)) == 1


def test_payout_settles_once(busy_ledger):
    busy_ledger.register_user(USER)
    policy_id = busy_ledger.create_policy("admin", {
        "coverage_amount": 100, "premium_amount": 10, "payout_amount": 80, "term_days": 30,
    })
    busy_ledger.activate_policy(policy_id)
    busy_ledger.buy_policy(USER, policy_id)
    claim_id = busy_ledger.submit_claim(USER, policy_id, "0xevidence")
    busy_ledger.process_claim(claim_id, "0xoracle", approved=True)

    errors = run_threads(lambda i: busy_ledger.payout_claim(claim_id))

    assert len(errors) == THREADS - 1
    assert busy_ledger.get_reserve_info().total_payouts == 80
    assert all(busy_ledger.check_invariants().values())
