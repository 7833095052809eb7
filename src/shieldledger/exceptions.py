"""
ShieldLedger Exception Hierarchy

Every failure surfaced by the ledger carries a deterministic error code so the
boundary adapter and its callers can react without parsing messages.

Error Codes (by category):

validation - caller mistakes, reported immediately, never retried
    SL_INVALID_AMOUNT, SL_INVALID_POLICY_TERMS, SL_INVALID_TRANSITION,
    SL_AMOUNT_OVERFLOW, SL_NOT_FOUND, SL_ACCOUNT_NOT_ACTIVE,
    SL_COVERAGE_EXISTS, SL_NO_ACTIVE_COVERAGE, SL_DUPLICATE_CLAIM

resource - reflect current ledger state, not transient
    SL_INSUFFICIENT_STAKE, SL_RESERVE_UNDERFUNDED, SL_NO_YIELD_AVAILABLE,
    SL_CLAIM_NOT_APPROVED, SL_ALREADY_SETTLED

concurrency - transient, the only class eligible for bounded retry
    SL_CONFLICT, SL_CONTENTION

internal - unexpected faults; prior committed state is untouched
    SL_INTERNAL_ERROR, SL_INTEGRITY_FAIL, SL_CONFIG_ERROR
"""

from typing import Any, Dict, Optional
import json

__all__ = [
    'LedgerError',
    # validation
    'InvalidAmountError',
    'InvalidPolicyTermsError',
    'InvalidTransitionError',
    'AmountOverflowError',
    'NotFoundError',
    'AccountNotActiveError',
    'CoverageExistsError',
    'NoActiveCoverageError',
    'DuplicateClaimError',
    # resource
    'InsufficientStakeError',
    'ReserveUnderfundedError',
    'NoYieldAvailableError',
    'ClaimNotApprovedError',
    'AlreadySettledError',
    # concurrency
    'ConflictError',
    'ContentionError',
    # internal
    'InternalError',
    'IntegrityFailError',
    'ConfigError',
    # mapping
    'EXCEPTION_MAP',
    'wrap_internal_exception',
]

VALIDATION = "validation"
RESOURCE = "resource"
CONCURRENCY = "concurrency"
INTERNAL = "internal"


class LedgerError(Exception):
    """
    Base exception for all ShieldLedger errors.

    Provides a consistent interface for error handling with:
    - code: A deterministic error code (SL_*)
    - category: validation, resource, concurrency or internal
    - message: Human-readable error description
    - details: Additional context as a dictionary
    - request_id: Optional request identifier for tracing

    All errors can be serialized to dict or JSON for API responses.
    """

    code: str = "SL_INTERNAL_ERROR"
    category: str = INTERNAL

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}
        self.request_id = request_id

    @property
    def retryable(self) -> bool:
        """Only concurrency errors may be retried, from a fresh read."""
        return self.category == CONCURRENCY

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize error to a dictionary.

        Returns:
            Dictionary with code, category, message, details, and optionally request_id
        """
        result: Dict[str, Any] = {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "details": self.details,
        }
        if self.request_id is not None:
            result["request_id"] = self.request_id
        return result

    def to_json(self, indent: Optional[int] = None) -> str:
        """Serialize error to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"request_id={self.request_id!r})"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class InvalidAmountError(LedgerError):
    """Amount is zero, negative, or outside the permitted range."""

    code: str = "SL_INVALID_AMOUNT"
    category: str = VALIDATION


class InvalidPolicyTermsError(LedgerError):
    """
    Policy metadata failed economic validation.

    Raised when:
    - payout_amount exceeds coverage_amount
    - any monetary field is not strictly positive
    - term_days is not strictly positive
    """

    code: str = "SL_INVALID_POLICY_TERMS"
    category: str = VALIDATION


class InvalidTransitionError(LedgerError):
    """Requested status change is not an edge of the lifecycle."""

    code: str = "SL_INVALID_TRANSITION"
    category: str = VALIDATION


class AmountOverflowError(LedgerError):
    """Checked arithmetic left the range of the target field."""

    code: str = "SL_AMOUNT_OVERFLOW"
    category: str = VALIDATION


class NotFoundError(LedgerError):
    """Referenced account, policy, claim or coverage does not exist."""

    code: str = "SL_NOT_FOUND"
    category: str = VALIDATION


class InvalidInputError(LedgerError):
    """Identifier or enum argument is malformed."""

    code: str = "SL_INVALID_INPUT"
    category: str = VALIDATION


class AccountNotActiveError(LedgerError):
    """Account is INACTIVE or BANNED for an operation that requires ACTIVE."""

    code: str = "SL_ACCOUNT_NOT_ACTIVE"
    category: str = VALIDATION


class CoverageExistsError(LedgerError):
    """User already holds active coverage for this policy."""

    code: str = "SL_COVERAGE_EXISTS"
    category: str = VALIDATION


class NoActiveCoverageError(LedgerError):
    """User holds no active, unexpired coverage for this policy."""

    code: str = "SL_NO_ACTIVE_COVERAGE"
    category: str = VALIDATION


class DuplicateClaimError(LedgerError):
    """User already has an open claim against this policy."""

    code: str = "SL_DUPLICATE_CLAIM"
    category: str = VALIDATION


# =============================================================================
# RESOURCE ERRORS
# =============================================================================

class InsufficientStakeError(LedgerError):
    """Unstake amount exceeds the account's stake."""

    code: str = "SL_INSUFFICIENT_STAKE"
    category: str = RESOURCE


class ReserveUnderfundedError(LedgerError):
    """
    Reserve cannot cover the requested outflow.

    Raised when:
    - an unstake would dip below outstanding liabilities
    - a yield claim exceeds the premium surplus
    - a payout exceeds total funds
    """

    code: str = "SL_RESERVE_UNDERFUNDED"
    category: str = RESOURCE


class NoYieldAvailableError(LedgerError):
    """Pending yield is zero."""

    code: str = "SL_NO_YIELD_AVAILABLE"
    category: str = RESOURCE


class ClaimNotApprovedError(LedgerError):
    """Payout requested for a claim that is not APPROVED."""

    code: str = "SL_CLAIM_NOT_APPROVED"
    category: str = RESOURCE


class AlreadySettledError(LedgerError):
    """Claim was already PAID."""

    code: str = "SL_ALREADY_SETTLED"
    category: str = RESOURCE


# =============================================================================
# CONCURRENCY ERRORS
# =============================================================================

class ConflictError(LedgerError):
    """A concurrent writer advanced an entity past the version this operation read."""

    code: str = "SL_CONFLICT"
    category: str = CONCURRENCY


class ContentionError(LedgerError):
    """No consistent snapshot could be committed within the retry budget."""

    code: str = "SL_CONTENTION"
    category: str = CONCURRENCY


# =============================================================================
# INTERNAL ERRORS
# =============================================================================

class InternalError(LedgerError):
    """
    Unexpected internal error.

    Catch-all for faults that don't fit other categories. Raised after
    pending writes were discarded, so committed state is unchanged.
    """

    code: str = "SL_INTERNAL_ERROR"
    category: str = INTERNAL


class IntegrityFailError(LedgerError):
    """
    Persisted ledger log failed verification.

    Raised when:
    - the WAL header or a record is corrupt beyond the torn tail
    - the hash chain is broken
    - a replayed record does not apply cleanly
    """

    code: str = "SL_INTEGRITY_FAIL"
    category: str = INTERNAL


class ConfigError(LedgerError):
    """Configuration file or environment override is invalid."""

    code: str = "SL_CONFIG_ERROR"
    category: str = INTERNAL


# =============================================================================
# EXCEPTION MAPPING
# =============================================================================

# Imported after class definitions; wal and canon do not depend on this module.
from .canon import CanonicalEncodingError
from .wal import WALError, WALCorruptionError, WALChainError, WALHeaderError, WALSequenceError

EXCEPTION_MAP: Dict[type, type] = {
    WALChainError: IntegrityFailError,
    WALCorruptionError: IntegrityFailError,
    WALHeaderError: IntegrityFailError,
    WALSequenceError: IntegrityFailError,
    WALError: InternalError,
    CanonicalEncodingError: InternalError,
    ValueError: InvalidAmountError,
    TypeError: InvalidAmountError,
}


def wrap_internal_exception(
    exc: Exception,
    default_message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> LedgerError:
    """
    Wrap an internal exception as a LedgerError.

    Known exception types map through EXCEPTION_MAP; anything else becomes
    InternalError. LedgerErrors pass through unchanged.

    Use with exception chaining to preserve the traceback:
        try:
            store.append(...)
        except WALError as e:
            raise wrap_internal_exception(e) from e
    """
    if isinstance(exc, LedgerError):
        return exc

    error_class = InternalError
    for exc_type in type(exc).__mro__:
        if exc_type in EXCEPTION_MAP:
            error_class = EXCEPTION_MAP[exc_type]
            break

    error_details = details.copy() if details else {}
    error_details["internal_error"] = type(exc).__name__

    return error_class(
        message=default_message or str(exc),
        details=error_details,
        request_id=request_id
    )
