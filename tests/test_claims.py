"""
Tests for claim submission, adjudication and payout.

Validates:
- One open claim per coverage
- Approval earmarks funds, rejection releases the coverage
- Payout from surplus first, then pro rata from stakes of non-banned funders
- Settlement happens exactly once
- A claim only ever consumes the coverage term it was filed on
"""
import pytest

from shieldledger.exceptions import (
    AccountNotActiveError,
    AlreadySettledError,
    ClaimNotApprovedError,
    DuplicateClaimError,
    InvalidAmountError,
    InvalidTransitionError,
    NoActiveCoverageError,
    NotFoundError,
    ReserveUnderfundedError,
)
from shieldledger.models import ClaimStatus, UserStatus

from conftest import DAY, FUNDER, T0, USER

EVIDENCE = "0xevidence"
ORACLE = "0xoracle"
TERM = 90 * DAY


@pytest.fixture
def covered(funded_ledger):
    """USER holds coverage on policy 1; reserve holds 11_000_000."""
    funded_ledger.buy_policy(USER, 1)
    return funded_ledger


def approved_claim(ledger, amount):
    claim_id = ledger.submit_claim(USER, 1, EVIDENCE, amount=amount)
    ledger.process_claim(claim_id, ORACLE, approved=True)
    return claim_id


# ============================================================================
# SUBMISSION
# ============================================================================

class TestSubmitClaim:
    def test_defaults_to_full_payout(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE)
        claim = covered.get_claim(claim_id)

        assert claim_id == 1
        assert claim.status == ClaimStatus.PENDING
        assert claim.amount == 80_000_000
        assert claim.evidence_hash == EVIDENCE
        assert claim.submission_time == T0
        assert claim.coverage_start == T0
        assert covered.get_coverage(USER, 1).open_claim_id == claim_id

    def test_partial_amount(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE, amount=5_000_000)
        assert covered.get_claim(claim_id).amount == 5_000_000

    def test_amount_above_payout(self, covered):
        with pytest.raises(InvalidAmountError):
            covered.submit_claim(USER, 1, EVIDENCE, amount=80_000_001)

    def test_zero_amount(self, covered):
        with pytest.raises(InvalidAmountError):
            covered.submit_claim(USER, 1, EVIDENCE, amount=0)

    def test_one_open_claim_per_coverage(self, covered):
        first = covered.submit_claim(USER, 1, EVIDENCE)

        with pytest.raises(DuplicateClaimError) as exc_info:
            covered.submit_claim(USER, 1, "0xother")
        assert exc_info.value.details["claim_id"] == first

    def test_duplicate_while_approved(self, covered):
        approved_claim(covered, 1_000_000)
        with pytest.raises(DuplicateClaimError):
            covered.submit_claim(USER, 1, EVIDENCE)

    def test_without_coverage(self, covered):
        with pytest.raises(NoActiveCoverageError):
            covered.submit_claim(FUNDER, 1, EVIDENCE)

    def test_after_coverage_expiry(self, covered, clock):
        clock.advance(90 * DAY)
        with pytest.raises(NoActiveCoverageError):
            covered.submit_claim(USER, 1, EVIDENCE)

    def test_policy_not_active(self, covered):
        covered.pause_policy(1)
        with pytest.raises(InvalidTransitionError):
            covered.submit_claim(USER, 1, EVIDENCE)

    def test_banned_user(self, covered):
        covered.set_user_status(USER, UserStatus.BANNED)
        with pytest.raises(AccountNotActiveError):
            covered.submit_claim(USER, 1, EVIDENCE)

    def test_failed_submission_burns_no_id(self, covered):
        with pytest.raises(InvalidAmountError):
            covered.submit_claim(USER, 1, EVIDENCE, amount=90_000_000)
        assert covered.submit_claim(USER, 1, EVIDENCE) == 1


# ============================================================================
# ADJUDICATION
# ============================================================================

class TestProcessClaim:
    def test_approve_earmarks_liability(self, covered, clock):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE, amount=4_000_000)
        clock.advance(60)

        assert covered.process_claim(claim_id, ORACLE, approved=True) == ClaimStatus.APPROVED

        claim = covered.get_claim(claim_id)
        assert claim.external_data_hash == ORACLE
        assert claim.processing_time == T0 + 60

        reserve = covered.get_reserve_info()
        assert reserve.outstanding_liabilities == 4_000_000
        assert reserve.total_funds == 11_000_000

    def test_reject_releases_coverage(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE)

        assert covered.process_claim(claim_id, ORACLE, approved=False) == ClaimStatus.REJECTED
        assert covered.get_coverage(USER, 1).open_claim_id == 0
        assert covered.get_reserve_info().outstanding_liabilities == 0
        assert covered.submit_claim(USER, 1, EVIDENCE) == 2

    def test_process_twice(self, covered):
        claim_id = approved_claim(covered, 1_000_000)

        with pytest.raises(InvalidTransitionError):
            covered.process_claim(claim_id, ORACLE, approved=False)
        assert covered.get_reserve_info().outstanding_liabilities == 1_000_000

    def test_policy_paused_after_submission(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE)
        covered.pause_policy(1)

        with pytest.raises(InvalidTransitionError):
            covered.process_claim(claim_id, ORACLE, approved=True)
        assert covered.get_claim(claim_id).status == ClaimStatus.PENDING

    def test_unknown_claim(self, covered):
        with pytest.raises(NotFoundError):
            covered.process_claim(99, ORACLE, approved=True)


# ============================================================================
# PAYOUT
# ============================================================================

class TestPayout:
    def test_paid_from_surplus(self, covered, clock):
        claim_id = approved_claim(covered, 5_000_000)
        clock.advance(120)

        assert covered.payout_claim(claim_id) == 5_000_000

        claim = covered.get_claim(claim_id)
        assert claim.status == ClaimStatus.PAID
        assert claim.settlement_time == T0 + 120

        reserve = covered.get_reserve_info()
        assert reserve.total_funds == 6_000_000
        assert reserve.total_staked == 1_000_000
        assert reserve.outstanding_liabilities == 0
        assert reserve.total_payouts == 5_000_000
        assert covered.get_funder_stake(FUNDER) == 1_000_000

    def test_payout_consumes_coverage(self, covered):
        covered.payout_claim(approved_claim(covered, 5_000_000))
        coverage = covered.get_coverage(USER, 1)

        assert not coverage.is_active
        assert not coverage.auto_renew
        assert coverage.open_claim_id == 0
        with pytest.raises(NoActiveCoverageError):
            covered.submit_claim(USER, 1, EVIDENCE)

    def test_rebuy_after_payout(self, covered):
        covered.payout_claim(approved_claim(covered, 5_000_000))
        assert covered.buy_policy(USER, 1).is_active

    def test_settles_once(self, covered):
        claim_id = approved_claim(covered, 5_000_000)
        covered.payout_claim(claim_id)

        with pytest.raises(AlreadySettledError):
            covered.payout_claim(claim_id)
        assert covered.get_reserve_info().total_payouts == 5_000_000

    def test_pending_claim_not_payable(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE)
        with pytest.raises(ClaimNotApprovedError):
            covered.payout_claim(claim_id)

    def test_rejected_claim_not_payable(self, covered):
        claim_id = covered.submit_claim(USER, 1, EVIDENCE)
        covered.process_claim(claim_id, ORACLE, approved=False)
        with pytest.raises(ClaimNotApprovedError):
            covered.payout_claim(claim_id)

    def test_underfunded_reserve(self, covered):
        claim_id = approved_claim(covered, 80_000_000)

        with pytest.raises(ReserveUnderfundedError):
            covered.payout_claim(claim_id)

        assert covered.get_claim(claim_id).status == ClaimStatus.APPROVED
        assert covered.get_reserve_info().total_funds == 11_000_000

    def test_shortfall_taken_from_stake(self, covered):
        covered.payout_claim(approved_claim(covered, 10_500_000))

        reserve = covered.get_reserve_info()
        assert reserve.total_funds == 500_000
        assert reserve.total_staked == 500_000
        assert reserve.surplus == 0
        assert covered.get_funder_stake(FUNDER) == 500_000
        assert all(covered.check_invariants().values())

    def test_shortfall_split_pro_rata(self, covered):
        covered.register_user("0xother")
        covered.stake("0xother", 3_000_000)

        # surplus 10_000_000, shortfall 400_000 over stakes 1:3
        covered.payout_claim(approved_claim(covered, 10_400_000))

        assert covered.get_funder_stake(FUNDER) == 900_000
        assert covered.get_funder_stake("0xother") == 2_700_000
        assert covered.get_reserve_info().total_staked == 3_600_000
        assert all(covered.check_invariants().values())

    def test_wiped_out_staker_is_no_longer_counted(self, covered):
        covered.payout_claim(approved_claim(covered, 11_000_000))

        reserve = covered.get_reserve_info()
        assert reserve.total_funds == 0
        assert reserve.total_stakers == 0
        assert covered.get_funder_stake(FUNDER) == 0
        assert all(covered.check_invariants().values())

    def test_haircut_checkpoints_yield_first(self, covered, clock):
        clock.advance(DAY)
        covered.payout_claim(approved_claim(covered, 10_500_000))

        info = covered.get_yield_info(FUNDER)
        assert info["accrued_yield"] == 50_000
        assert info["stake"] == 500_000

    def test_banned_funder_excluded_from_haircut(self, covered, clock):
        covered.register_user("0xother")
        covered.stake("0xother", 3_000_000)
        covered.set_user_status(FUNDER, UserStatus.BANNED)
        clock.advance(DAY)

        # surplus 10_000_000, shortfall 400_000 borne by 0xother alone
        covered.payout_claim(approved_claim(covered, 10_400_000))

        banned = covered.get_user_profile(FUNDER)
        assert banned.stake == 1_000_000
        assert banned.accrued_yield == 0
        assert banned.last_yield_claimed == T0
        assert covered.get_funder_stake("0xother") == 2_600_000
        assert covered.get_reserve_info().total_staked == 3_600_000
        assert all(covered.check_invariants().values())

    def test_shortfall_beyond_non_banned_stake(self, covered):
        covered.set_user_status(FUNDER, UserStatus.BANNED)
        claim_id = approved_claim(covered, 10_500_000)
        before = covered.store.snapshot()

        with pytest.raises(ReserveUnderfundedError) as exc_info:
            covered.payout_claim(claim_id)

        assert exc_info.value.details["eligible_stake"] == 0
        assert covered.store.snapshot() == before
        assert covered.get_funder_stake(FUNDER) == 1_000_000


# ============================================================================
# COVERAGE TERMS
# ============================================================================

class TestClaimOnLapsedTerm:
    """A claim filed on one term never consumes a term bought later."""

    def lapsed_claim(self, ledger, clock):
        claim_id = ledger.submit_claim(USER, 1, EVIDENCE, amount=5_000_000)
        clock.advance(TERM + DAY)
        ledger.process_claim(claim_id, ORACLE, approved=True)
        return claim_id

    def test_rebuy_then_pay_old_claim(self, covered, clock):
        claim_id = self.lapsed_claim(covered, clock)
        fresh = covered.buy_policy(USER, 1)
        assert fresh.open_claim_id == 0

        assert covered.payout_claim(claim_id) == 5_000_000

        coverage = covered.get_coverage(USER, 1)
        assert coverage.is_active
        assert coverage.auto_renew
        assert coverage.covers(clock.now)
        assert coverage.premium_paid == 20_000_000
        assert all(covered.check_invariants().values())

    def test_new_term_accepts_its_own_claim(self, covered, clock):
        self.lapsed_claim(covered, clock)
        covered.buy_policy(USER, 1)

        claim_id = covered.submit_claim(USER, 1, EVIDENCE)
        assert covered.get_coverage(USER, 1).open_claim_id == claim_id

    def test_renewal_after_lapse_then_pay_old_claim(self, covered, clock):
        claim_id = self.lapsed_claim(covered, clock)
        renewed = covered.renew_coverage(USER, 1)
        assert renewed.purchase_time == clock.now
        assert renewed.open_claim_id == 0

        covered.payout_claim(claim_id)

        assert covered.get_coverage(USER, 1).covers(clock.now)
        assert all(covered.check_invariants().values())

    def test_reject_old_claim_leaves_new_term(self, covered, clock):
        old = covered.submit_claim(USER, 1, EVIDENCE)
        clock.advance(TERM + DAY)
        covered.buy_policy(USER, 1)
        current = covered.submit_claim(USER, 1, EVIDENCE)

        covered.process_claim(old, ORACLE, approved=False)

        assert covered.get_coverage(USER, 1).open_claim_id == current


# ============================================================================
# QUERIES
# ============================================================================

def test_claims_by_policy_and_user(covered):
    first = covered.submit_claim(USER, 1, EVIDENCE)
    covered.process_claim(first, ORACLE, approved=False)
    second = covered.submit_claim(USER, 1, EVIDENCE)

    assert [c.id for c in covered.get_claims_for_policy(1)] == [first, second]
    assert [c.id for c in covered.get_user_claims(USER)] == [first, second]
    assert covered.get_user_claims(FUNDER) == []
    assert covered.get_claims_for_policy(2) == []
