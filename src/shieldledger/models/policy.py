"""
ShieldLedger Policy Models

- PolicyMetadata: economic terms of a parametric policy
- Policy: an admin-defined product moving through DRAFT/ACTIVE/PAUSED/EXPIRED
- Coverage: a user's purchased, time-bounded holding of a policy
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from ..amounts import U256_MAX, U32_MAX
from ..exceptions import InvalidPolicyTermsError
from .base import LedgerEntity
from .enums import PolicyStatus

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class PolicyMetadata:
    """
    Economic terms, all amounts in token base units.

    Attributes:
        coverage_amount: Maximum insured value
        premium_amount: Price of one term of coverage
        payout_amount: Fixed parametric payout when the trigger fires
        term_days: Length of one coverage term
        trigger_description: Human-readable trigger condition
        details: Free-form product details
    """
    coverage_amount: int
    premium_amount: int
    payout_amount: int
    term_days: int
    trigger_description: str = ""
    details: str = ""

    def validate(self) -> None:
        """Raise InvalidPolicyTermsError unless the terms are economically sound."""
        problems = []
        for name in ("coverage_amount", "premium_amount", "payout_amount"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                problems.append(f"{name} must be an integer")
            elif value <= 0:
                problems.append(f"{name} must be greater than zero")
            elif value > U256_MAX:
                problems.append(f"{name} exceeds u256")

        term = self.term_days
        if isinstance(term, bool) or not isinstance(term, int) or term <= 0:
            problems.append("term_days must be a positive integer")
        elif term > U32_MAX:
            problems.append("term_days exceeds u32")

        if not problems and self.payout_amount > self.coverage_amount:
            problems.append("payout_amount must not exceed coverage_amount")

        if problems:
            raise InvalidPolicyTermsError(
                "; ".join(problems),
                details={"problems": problems},
            )

    @property
    def term_seconds(self) -> int:
        return self.term_days * SECONDS_PER_DAY

    def to_dict(self) -> dict[str, Any]:
        return {
            "coverage_amount": self.coverage_amount,
            "premium_amount": self.premium_amount,
            "payout_amount": self.payout_amount,
            "term_days": self.term_days,
            "trigger_description": self.trigger_description,
            "details": self.details,
        }


@dataclass(frozen=True)
class Policy(LedgerEntity):
    """
    A policy definition.

    Attributes:
        id: Monotonic id starting at 1
        creator: Admin identity that created the policy
        metadata: Economic terms
        status: Lifecycle status
        creation_time: When the DRAFT was admitted
        approval_time: First activation time, 0 while DRAFT
    """
    kind: ClassVar[str] = "policy"

    id: int
    creator: str
    metadata: PolicyMetadata
    status: PolicyStatus = PolicyStatus.DRAFT
    creation_time: int = 0
    approval_time: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return str(self.id)

    @property
    def is_active(self) -> bool:
        return self.status == PolicyStatus.ACTIVE

    @property
    def expires_at(self) -> int:
        """Time from which the policy is eligible for expiry."""
        return self.creation_time + self.metadata.term_seconds

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Policy:
        data = dict(data)
        data["status"] = PolicyStatus(data["status"])
        data["metadata"] = PolicyMetadata(**data["metadata"])
        return super().from_dict(data)


@dataclass(frozen=True)
class Coverage(LedgerEntity):
    """
    A user's holding of a policy.

    Attributes:
        policy_id: Covered policy
        user: Holder address
        purchase_time: Start of the current term
        expiry_time: End of the current term
        is_active: False once cancelled by payout
        auto_renew: Whether the scheduler may renew at expiry
        premium_paid: Premiums collected over all terms
        open_claim_id: Pending or approved claim against this coverage, 0 if none
    """
    kind: ClassVar[str] = "coverage"

    policy_id: int
    user: str
    purchase_time: int = 0
    expiry_time: int = 0
    is_active: bool = True
    auto_renew: bool = True
    premium_paid: int = 0
    open_claim_id: int = 0
    version: int = 0

    @staticmethod
    def make_key(user: str, policy_id: int) -> str:
        return f"{policy_id}:{user}"

    @property
    def key(self) -> str:
        return self.make_key(self.user, self.policy_id)

    def covers(self, now: int) -> bool:
        return self.is_active and now < self.expiry_time
