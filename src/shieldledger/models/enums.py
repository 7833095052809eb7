"""
ShieldLedger Enumerations

Status enums for accounts, policies and claims, plus the closed transition
tables that drive the policy and claim lifecycles.

All enums inherit from (str, Enum) for JSON serialization compatibility.
"""
from __future__ import annotations

from enum import Enum

from ..exceptions import InvalidTransitionError


# =============================================================================
# Account Status
# =============================================================================

class UserStatus(str, Enum):
    """Admin-controlled account status."""
    INACTIVE = "inactive"
    ACTIVE = "active"
    BANNED = "banned"


# =============================================================================
# Policy Lifecycle
# =============================================================================

class PolicyStatus(str, Enum):
    """
    Lifecycle of a policy definition.

    DRAFT on creation, EXPIRED is terminal.
    """
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    PAUSED = "paused"


class PolicyAction(str, Enum):
    ACTIVATE = "activate"
    PAUSE = "pause"
    EXPIRE = "expire"


POLICY_TRANSITIONS: dict[tuple[PolicyStatus, PolicyAction], PolicyStatus] = {
    (PolicyStatus.DRAFT, PolicyAction.ACTIVATE): PolicyStatus.ACTIVE,
    (PolicyStatus.ACTIVE, PolicyAction.PAUSE): PolicyStatus.PAUSED,
    (PolicyStatus.PAUSED, PolicyAction.ACTIVATE): PolicyStatus.ACTIVE,
    (PolicyStatus.ACTIVE, PolicyAction.EXPIRE): PolicyStatus.EXPIRED,
    (PolicyStatus.PAUSED, PolicyAction.EXPIRE): PolicyStatus.EXPIRED,
}


# =============================================================================
# Claim Lifecycle
# =============================================================================

class ClaimStatus(str, Enum):
    """
    Lifecycle of a claim.

    PENDING on submission; REJECTED and PAID are terminal.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ClaimAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    PAYOUT = "payout"


CLAIM_TRANSITIONS: dict[tuple[ClaimStatus, ClaimAction], ClaimStatus] = {
    (ClaimStatus.PENDING, ClaimAction.APPROVE): ClaimStatus.APPROVED,
    (ClaimStatus.PENDING, ClaimAction.REJECT): ClaimStatus.REJECTED,
    (ClaimStatus.APPROVED, ClaimAction.PAYOUT): ClaimStatus.PAID,
}

OPEN_CLAIM_STATUSES = frozenset({ClaimStatus.PENDING, ClaimStatus.APPROVED})


def next_policy_status(current: PolicyStatus, action: PolicyAction) -> PolicyStatus:
    """Resolve a policy transition or raise InvalidTransitionError."""
    try:
        return POLICY_TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {action.value} a policy in status {current.value}",
            details={"from": current.value, "action": action.value},
        ) from None


def next_claim_status(current: ClaimStatus, action: ClaimAction) -> ClaimStatus:
    """Resolve a claim transition or raise InvalidTransitionError."""
    try:
        return CLAIM_TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {action.value} a claim in status {current.value}",
            details={"from": current.value, "action": action.value},
        ) from None
