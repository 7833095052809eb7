"""
ShieldLedger Models

Versioned, immutable ledger entities and their status enums.
"""
from __future__ import annotations

from .account import RESERVE_KEY, Account, Reserve
from .base import LedgerEntity
from .claim import Claim
from .enums import (
    CLAIM_TRANSITIONS,
    OPEN_CLAIM_STATUSES,
    POLICY_TRANSITIONS,
    ClaimAction,
    ClaimStatus,
    PolicyAction,
    PolicyStatus,
    UserStatus,
    next_claim_status,
    next_policy_status,
)
from .policy import SECONDS_PER_DAY, Coverage, Policy, PolicyMetadata

__all__ = [
    # Base
    "LedgerEntity",
    # Enums
    "UserStatus",
    "PolicyStatus",
    "PolicyAction",
    "ClaimStatus",
    "ClaimAction",
    "POLICY_TRANSITIONS",
    "CLAIM_TRANSITIONS",
    "OPEN_CLAIM_STATUSES",
    "next_policy_status",
    "next_claim_status",
    # Entities
    "Account",
    "Reserve",
    "RESERVE_KEY",
    "Policy",
    "PolicyMetadata",
    "Coverage",
    "Claim",
    "SECONDS_PER_DAY",
]
