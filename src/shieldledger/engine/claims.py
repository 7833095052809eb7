"""
ShieldLedger Claims Adjudication Pipeline

    PENDING --approve--> APPROVED --payout--> PAID
    PENDING --reject---> REJECTED

Approval earmarks the claim amount as an outstanding liability; only payout
moves funds. A payout is taken from the premium surplus first and any
shortfall is deducted pro rata from the stakes of funders that are not
BANNED, so that

    total_funds == total_staked + surplus,  surplus >= 0

holds after every payout.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..amounts import checked_add, checked_sub, require_positive
from ..clock import Clock, system_clock
from ..exceptions import (
    AccountNotActiveError,
    AlreadySettledError,
    ClaimNotApprovedError,
    DuplicateClaimError,
    InvalidAmountError,
    InvalidTransitionError,
    NoActiveCoverageError,
    ReserveUnderfundedError,
)
from ..models import (
    Account,
    Claim,
    ClaimAction,
    ClaimStatus,
    next_claim_status,
)
from ..store import LedgerStore, Transaction
from .reserve import DEFAULT_YIELD_PERIOD_SECONDS, checkpoint_yield, distribute_shortfall

logger = logging.getLogger(__name__)

CLAIM_SEQUENCE = "claim"


class ClaimsPipeline:
    """
    Claim submission, oracle-driven adjudication and settlement.

    Usage:
        pipeline = ClaimsPipeline(store)
        claim_id = pipeline.submit_claim("0xuser", policy_id, "0xevidence")
        pipeline.process_claim(claim_id, "0xoracle", approved=True)
        pipeline.payout_claim(claim_id)
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock = system_clock,
        yield_period_seconds: int = DEFAULT_YIELD_PERIOD_SECONDS,
    ):
        self.store = store
        self.clock = clock
        self.yield_period_seconds = yield_period_seconds

    def submit_claim(
        self,
        user: str,
        policy_id: int,
        evidence_hash: str,
        amount: Optional[int] = None,
    ) -> int:
        """
        Open a PENDING claim against the user's coverage.

        Args:
            amount: Requested payout; defaults to the policy's full payout_amount

        Returns:
            The new claim id
        """
        if amount is not None:
            amount = require_positive(amount)

        def op(txn: Transaction) -> int:
            now = self.clock()
            account = txn.account(user)
            if not account.is_active:
                raise AccountNotActiveError(
                    f"Account {user} is {account.status.value}",
                    details={"address": user, "status": account.status.value},
                )
            policy = txn.policy(policy_id)
            if not policy.is_active:
                raise InvalidTransitionError(
                    f"Cannot claim on policy {policy_id} in status {policy.status.value}",
                    details={"policy_id": policy_id, "status": policy.status.value},
                )

            coverage = txn.coverage(user, policy_id)
            if coverage is None or not coverage.covers(now):
                raise NoActiveCoverageError(
                    f"{user} holds no active coverage on policy {policy_id}",
                    details={"address": user, "policy_id": policy_id},
                )
            if coverage.open_claim_id:
                raise DuplicateClaimError(
                    f"Claim {coverage.open_claim_id} is still open on policy {policy_id}",
                    details={"address": user, "policy_id": policy_id, "claim_id": coverage.open_claim_id},
                )

            payout = policy.metadata.payout_amount
            requested = payout if amount is None else amount
            if requested > payout:
                raise InvalidAmountError(
                    f"Claim amount {requested} exceeds payout {payout}",
                    details={"amount": requested, "payout_amount": payout},
                )

            claim_id = txn.next_id(CLAIM_SEQUENCE)
            txn.put(Claim(
                id=claim_id,
                policy_id=policy_id,
                user=user,
                amount=requested,
                status=ClaimStatus.PENDING,
                evidence_hash=evidence_hash,
                submission_time=now,
                coverage_start=coverage.purchase_time,
            ))
            txn.put(coverage.evolve(open_claim_id=claim_id))
            return claim_id

        return self.store.run(op, "submit_claim")

    def process_claim(self, claim_id: int, external_data_hash: str, approved: bool) -> ClaimStatus:
        """Record the oracle verdict. Moves no funds."""
        action = ClaimAction.APPROVE if approved else ClaimAction.REJECT

        def op(txn: Transaction) -> ClaimStatus:
            now = self.clock()
            claim = txn.claim(claim_id)
            status = next_claim_status(claim.status, action)
            policy = txn.policy(claim.policy_id)
            if not policy.is_active:
                raise InvalidTransitionError(
                    f"Cannot process claim {claim_id}: policy {policy.id} is {policy.status.value}",
                    details={"claim_id": claim_id, "policy_id": policy.id, "status": policy.status.value},
                )

            txn.put(claim.evolve(
                status=status,
                external_data_hash=external_data_hash,
                processing_time=now,
            ))
            if status == ClaimStatus.APPROVED:
                reserve = txn.reserve()
                txn.put(reserve.evolve(
                    outstanding_liabilities=checked_add(
                        reserve.outstanding_liabilities, claim.amount, "outstanding_liabilities"
                    ),
                ))
            else:
                self._release_coverage(txn, claim, consume=False)
            return status

        return self.store.run(op, "process_claim")

    def payout_claim(self, claim_id: int) -> int:
        """
        Settle an APPROVED claim. Returns the amount paid.

        Raises:
            AlreadySettledError: the claim is already PAID
            ClaimNotApprovedError: the claim is PENDING or REJECTED
            ReserveUnderfundedError: total_funds cannot cover the amount, or the
                shortfall exceeds the stake of non-banned funders
        """

        def op(txn: Transaction) -> int:
            now = self.clock()
            claim = txn.claim(claim_id)
            if claim.status == ClaimStatus.PAID:
                raise AlreadySettledError(
                    f"Claim {claim_id} is already paid",
                    details={"claim_id": claim_id, "settlement_time": claim.settlement_time},
                )
            if claim.status != ClaimStatus.APPROVED:
                raise ClaimNotApprovedError(
                    f"Claim {claim_id} is {claim.status.value}",
                    details={"claim_id": claim_id, "status": claim.status.value},
                )
            status = next_claim_status(claim.status, ClaimAction.PAYOUT)

            reserve = txn.reserve()
            amount = claim.amount
            if reserve.total_funds < amount:
                raise ReserveUnderfundedError(
                    f"Reserve holds {reserve.total_funds}, claim {claim_id} needs {amount}",
                    details={"claim_id": claim_id, "amount": amount, "total_funds": reserve.total_funds},
                )

            shortfall = amount - min(reserve.surplus, amount)
            stakers_lost = 0
            if shortfall:
                stakers = txn.scan(Account, lambda a: a.stake > 0 and not a.is_banned)
                eligible = sum(a.stake for a in stakers)
                if shortfall > eligible:
                    raise ReserveUnderfundedError(
                        f"Claim {claim_id} shortfall {shortfall} exceeds non-banned stake {eligible}",
                        details={"claim_id": claim_id, "shortfall": shortfall, "eligible_stake": eligible},
                    )
                for address, cut in distribute_shortfall(stakers, shortfall).items():
                    account = checkpoint_yield(txn.account(address), reserve, now, self.yield_period_seconds)
                    remaining = checked_sub(account.stake, cut, "stake")
                    if remaining == 0:
                        stakers_lost += 1
                    txn.put(account.evolve(stake=remaining))
                logger.info(
                    "Claim %d payout exceeded surplus by %d; deducted pro rata from %d stakers",
                    claim_id, shortfall, len(stakers),
                )

            txn.put(reserve.evolve(
                total_funds=checked_sub(reserve.total_funds, amount, "total_funds"),
                total_staked=checked_sub(reserve.total_staked, shortfall, "total_staked"),
                total_stakers=checked_sub(reserve.total_stakers, stakers_lost, "total_stakers"),
                outstanding_liabilities=checked_sub(
                    reserve.outstanding_liabilities, amount, "outstanding_liabilities"
                ),
                total_payouts=checked_add(reserve.total_payouts, amount, "total_payouts"),
            ))
            txn.put(claim.evolve(status=status, settlement_time=now))
            self._release_coverage(txn, claim, consume=True)
            return amount

        return self.store.run(op, "payout_claim")

    @staticmethod
    def _release_coverage(txn: Transaction, claim: Claim, consume: bool) -> None:
        coverage = txn.coverage(claim.user, claim.policy_id)
        # a later term bought after the claimed one is left untouched
        if coverage is None or coverage.purchase_time != claim.coverage_start:
            return
        changes = {}
        if coverage.open_claim_id == claim.id:
            changes["open_claim_id"] = 0
        if consume:
            changes.update(is_active=False, auto_renew=False)
        if changes:
            txn.put(coverage.evolve(**changes))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_claim(self, claim_id: int) -> Claim:
        return self.store.require(Claim, str(claim_id))

    def get_claims_for_policy(self, policy_id: int) -> list[Claim]:
        return [c for c in self.store.all(Claim) if c.policy_id == policy_id]

    def get_user_claims(self, user: str) -> list[Claim]:
        return [c for c in self.store.all(Claim) if c.user == user]
