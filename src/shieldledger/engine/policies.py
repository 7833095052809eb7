"""
ShieldLedger Policy Lifecycle Manager

Policy definitions and the coverages users buy against them.

    DRAFT  --activate--> ACTIVE      ACTIVE --pause-->  PAUSED
    PAUSED --activate--> ACTIVE      ACTIVE --expire--> EXPIRED
    PAUSED --expire-->   EXPIRED

The manager never expires a policy by itself: `policies_due_for_expiry` lists
candidates and an external scheduler calls `expire_policy`.
"""
from __future__ import annotations

from typing import Any, Optional, Union

from ..amounts import U32_MAX, checked_add
from ..clock import Clock, system_clock
from ..exceptions import (
    AccountNotActiveError,
    CoverageExistsError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
)
from ..models import (
    Coverage,
    Policy,
    PolicyAction,
    PolicyMetadata,
    PolicyStatus,
    next_policy_status,
)
from ..store import LedgerStore, Transaction

POLICY_SEQUENCE = "policy"


def _require_active_policy(policy: Policy, action: str) -> None:
    if not policy.is_active:
        raise InvalidTransitionError(
            f"Cannot {action} policy {policy.id} in status {policy.status.value}",
            details={"policy_id": policy.id, "status": policy.status.value},
        )


class PolicyManager:
    """
    Admin policy lifecycle plus user coverage.

    Usage:
        manager = PolicyManager(store)
        policy_id = manager.create_policy("admin", metadata)
        manager.activate_policy(policy_id)
        manager.buy_policy("0xuser", policy_id)
    """

    def __init__(self, store: LedgerStore, clock: Clock = system_clock):
        self.store = store
        self.clock = clock

    # -------------------------------------------------------------------------
    # Policy lifecycle
    # -------------------------------------------------------------------------

    def create_policy(
        self,
        creator: str,
        metadata: Union[PolicyMetadata, dict[str, Any]],
    ) -> int:
        """Admit a DRAFT policy. Returns its id."""
        if isinstance(metadata, dict):
            metadata = PolicyMetadata(**metadata)
        metadata.validate()

        def op(txn: Transaction) -> int:
            now = self.clock()
            policy_id = txn.next_id(POLICY_SEQUENCE)
            txn.put(Policy(
                id=policy_id,
                creator=creator,
                metadata=metadata,
                status=PolicyStatus.DRAFT,
                creation_time=now,
            ))
            return policy_id

        return self.store.run(op, "create_policy")

    def _transition(self, policy_id: int, action: PolicyAction) -> PolicyStatus:
        def apply(policy: Policy) -> Policy:
            now = self.clock()
            status = next_policy_status(policy.status, action)
            changes: dict[str, Any] = {"status": status}
            if status == PolicyStatus.ACTIVE and policy.approval_time == 0:
                changes["approval_time"] = now
            return policy.evolve(**changes)

        return self.store.with_policy(policy_id, apply).status

    def activate_policy(self, policy_id: int) -> PolicyStatus:
        return self._transition(policy_id, PolicyAction.ACTIVATE)

    def pause_policy(self, policy_id: int) -> PolicyStatus:
        return self._transition(policy_id, PolicyAction.PAUSE)

    def expire_policy(self, policy_id: int) -> PolicyStatus:
        return self._transition(policy_id, PolicyAction.EXPIRE)

    def get_policy(self, policy_id: int) -> Policy:
        return self.store.require(Policy, str(policy_id))

    def list_policies(self, status: Optional[PolicyStatus] = None) -> list[Policy]:
        policies = self.store.all(Policy)
        if status is None:
            return policies
        try:
            status = PolicyStatus(status)
        except ValueError:
            raise InvalidInputError(
                f"Unknown policy status: {status!r}",
                details={"allowed": [s.value for s in PolicyStatus]},
            ) from None
        return [p for p in policies if p.status == status]

    def policies_due_for_expiry(self, now: Optional[int] = None) -> list[Policy]:
        """ACTIVE or PAUSED policies whose term has run out. Read-only."""
        now = self.clock() if now is None else now
        return [
            p for p in self.store.all(Policy)
            if p.status in (PolicyStatus.ACTIVE, PolicyStatus.PAUSED) and now >= p.expires_at
        ]

    # -------------------------------------------------------------------------
    # Coverage
    # -------------------------------------------------------------------------

    def buy_policy(self, user: str, policy_id: int) -> Coverage:
        """
        Purchase one term of coverage.

        The premium is credited to the reserve as surplus; the token transfer
        itself is settled before this call.

        Raises:
            AccountNotActiveError: account is not ACTIVE
            InvalidTransitionError: policy is not ACTIVE
            CoverageExistsError: the user already holds unexpired coverage
        """

        def op(txn: Transaction) -> Transaction:
            now = self.clock()
            account = txn.account(user)
            if not account.is_active:
                raise AccountNotActiveError(
                    f"Account {user} is {account.status.value}",
                    details={"address": user, "status": account.status.value},
                )
            policy = txn.policy(policy_id)
            _require_active_policy(policy, "buy")

            existing = txn.coverage(user, policy_id)
            if existing is not None and existing.covers(now):
                raise CoverageExistsError(
                    f"{user} already holds coverage on policy {policy_id}",
                    details={"address": user, "policy_id": policy_id, "expiry_time": existing.expiry_time},
                )

            premium = policy.metadata.premium_amount
            coverage = Coverage(
                policy_id=policy_id,
                user=user,
                purchase_time=now,
                expiry_time=now + policy.metadata.term_seconds,
                is_active=True,
                auto_renew=True,
                premium_paid=checked_add(existing.premium_paid if existing else 0, premium, "premium_paid"),
            )
            txn.put(coverage)
            txn.put(account.evolve(
                policies_count=checked_add(account.policies_count, 1, "policies_count", U32_MAX),
            ))
            _collect_premium(txn, premium)
            return txn

        return self.store.run(op, "buy_policy").committed(Coverage, Coverage.make_key(user, policy_id))

    def renew_coverage(self, user: str, policy_id: int) -> Coverage:
        """
        Extend auto-renewing coverage by one term and collect the premium.

        A lapsed coverage starts a new term at renewal time; a claim still open
        on the lapsed term no longer holds it.
        """

        def op(txn: Transaction) -> Transaction:
            now = self.clock()
            coverage = self._require_coverage(txn, user, policy_id)
            if not coverage.is_active or not coverage.auto_renew:
                raise InvalidTransitionError(
                    f"Coverage on policy {policy_id} for {user} does not renew",
                    details={
                        "address": user,
                        "policy_id": policy_id,
                        "is_active": coverage.is_active,
                        "auto_renew": coverage.auto_renew,
                    },
                )
            account = txn.account(user)
            if account.is_banned:
                raise AccountNotActiveError(
                    f"Account {user} is banned",
                    details={"address": user, "status": account.status.value},
                )
            policy = txn.policy(policy_id)
            _require_active_policy(policy, "renew")

            premium = policy.metadata.premium_amount
            changes: dict[str, Any] = {
                "expiry_time": max(coverage.expiry_time, now) + policy.metadata.term_seconds,
                "premium_paid": checked_add(coverage.premium_paid, premium, "premium_paid"),
            }
            if not coverage.covers(now):
                changes.update(purchase_time=now, open_claim_id=0)
            txn.put(coverage.evolve(**changes))
            _collect_premium(txn, premium)
            return txn

        return self.store.run(op, "renew_coverage").committed(Coverage, Coverage.make_key(user, policy_id))

    def cancel_auto_renewal(self, user: str, policy_id: int) -> Coverage:
        def op(txn: Transaction) -> Transaction:
            coverage = self._require_coverage(txn, user, policy_id)
            txn.put(coverage.evolve(auto_renew=False))
            return txn

        return self.store.run(op, "cancel_auto_renewal").committed(Coverage, Coverage.make_key(user, policy_id))

    def get_coverage(self, user: str, policy_id: int) -> Coverage:
        return self.store.require(Coverage, Coverage.make_key(user, policy_id))

    def get_user_policies(self, user: str) -> list[Coverage]:
        return [c for c in self.store.all(Coverage) if c.user == user]

    @staticmethod
    def _require_coverage(txn: Transaction, user: str, policy_id: int) -> Coverage:
        coverage = txn.coverage(user, policy_id)
        if coverage is None:
            raise NotFoundError(
                f"No coverage on policy {policy_id} for {user}",
                details={"address": user, "policy_id": policy_id},
            )
        return coverage


def _collect_premium(txn: Transaction, premium: int) -> None:
    reserve = txn.reserve()
    txn.put(reserve.evolve(
        total_funds=checked_add(reserve.total_funds, premium, "total_funds"),
        total_premiums=checked_add(reserve.total_premiums, premium, "total_premiums"),
    ))
