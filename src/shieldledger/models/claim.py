"""
ShieldLedger Claim Model

A claim references its policy and claimant by identifier only; both are looked
up at operation time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from .base import LedgerEntity
from .enums import OPEN_CLAIM_STATUSES, ClaimStatus


@dataclass(frozen=True)
class Claim(LedgerEntity):
    """
    A request for the parametric payout of a policy.

    Attributes:
        id: Monotonic id starting at 1
        policy_id: Policy the claim is made against
        user: Claimant address
        amount: Requested payout, at most the policy's payout_amount
        status: PENDING, APPROVED, REJECTED or PAID
        evidence_hash: Claimant-supplied evidence reference
        external_data_hash: Oracle attestation recorded at processing
        submission_time: When the claim was submitted
        processing_time: When it was approved or rejected, 0 before
        settlement_time: When it was paid, 0 before
        coverage_start: Purchase time of the coverage term the claim was filed on
    """
    kind: ClassVar[str] = "claim"

    id: int
    policy_id: int
    user: str
    amount: int
    status: ClaimStatus = ClaimStatus.PENDING
    evidence_hash: str = ""
    external_data_hash: str = ""
    submission_time: int = 0
    processing_time: int = 0
    settlement_time: int = 0
    coverage_start: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return str(self.id)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_CLAIM_STATUSES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Claim:
        data = dict(data)
        data["status"] = ClaimStatus(data["status"])
        return super().from_dict(data)
