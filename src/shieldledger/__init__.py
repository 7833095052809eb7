"""
ShieldLedger - Reserve & Policy Ledger for parametric micro-insurance

Users buy fixed-term policies that pay out when an oracle-attested trigger
fires. Payouts are funded by a reserve pool that funders stake into and that
earns yield from collected premiums.

Key Features:
- Staked capital accounting with per-period yield
- Policy and claim lifecycles as closed transition tables
- Optimistic per-entity versioning with bounded retry
- Hash-chained write-ahead log for durability and offline verification

Quick Start:
    from shieldledger import Ledger, PolicyMetadata

    ledger = Ledger()
    ledger.register_user("0xfunder")
    ledger.stake("0xfunder", 1_000_000)

    policy_id = ledger.create_policy("admin", PolicyMetadata(
        coverage_amount=100_000_000,
        premium_amount=10_000_000,
        payout_amount=80_000_000,
        term_days=90,
    ))
    ledger.activate_policy(policy_id)

Version: 0.1.0
"""
from __future__ import annotations

__version__ = "0.1.0"

from .config import LedgerConfig, load_config
from .exceptions import (
    AccountNotActiveError,
    AlreadySettledError,
    AmountOverflowError,
    ClaimNotApprovedError,
    ConfigError,
    ConflictError,
    ContentionError,
    CoverageExistsError,
    DuplicateClaimError,
    InsufficientStakeError,
    IntegrityFailError,
    InternalError,
    InvalidAmountError,
    InvalidInputError,
    InvalidPolicyTermsError,
    InvalidTransitionError,
    LedgerError,
    NoActiveCoverageError,
    NotFoundError,
    NoYieldAvailableError,
    ReserveUnderfundedError,
)
from .ledger import Ledger, check_invariants
from .models import (
    Account,
    Claim,
    ClaimStatus,
    Coverage,
    Policy,
    PolicyMetadata,
    PolicyStatus,
    Reserve,
    UserStatus,
)
from .store import LedgerStore, Transaction

__all__ = [
    "__version__",
    # Facade
    "Ledger",
    "check_invariants",
    "LedgerStore",
    "Transaction",
    # Config
    "LedgerConfig",
    "load_config",
    # Models
    "Account",
    "Reserve",
    "Policy",
    "PolicyMetadata",
    "Coverage",
    "Claim",
    "UserStatus",
    "PolicyStatus",
    "ClaimStatus",
    # Exceptions
    "LedgerError",
    "InvalidAmountError",
    "InvalidInputError",
    "InvalidPolicyTermsError",
    "InvalidTransitionError",
    "AmountOverflowError",
    "NotFoundError",
    "AccountNotActiveError",
    "CoverageExistsError",
    "NoActiveCoverageError",
    "DuplicateClaimError",
    "InsufficientStakeError",
    "ReserveUnderfundedError",
    "NoYieldAvailableError",
    "ClaimNotApprovedError",
    "AlreadySettledError",
    "ConflictError",
    "ContentionError",
    "InternalError",
    "IntegrityFailError",
    "ConfigError",
]
