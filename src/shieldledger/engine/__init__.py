"""
ShieldLedger Engine

Services that mutate the ledger store, one per component:

- ReserveEngine: stake, unstake, yield accrual and distribution
- PolicyManager: policy lifecycle and user coverage
- ClaimsPipeline: claim submission, adjudication and payout
- AccountRegistry: registration, status and KYC flags

Usage:
    from shieldledger.engine import (
        AccountRegistry,
        ClaimsPipeline,
        PolicyManager,
        ReserveEngine,
    )
"""
from __future__ import annotations

from .accounts import AccountRegistry
from .claims import ClaimsPipeline
from .policies import PolicyManager
from .reserve import (
    DEFAULT_YIELD_PERIOD_SECONDS,
    ReserveEngine,
    checkpoint_yield,
    distribute_shortfall,
    elapsed_periods,
    pending_yield,
)

__all__ = [
    # Reserve
    "ReserveEngine",
    "DEFAULT_YIELD_PERIOD_SECONDS",
    "pending_yield",
    "checkpoint_yield",
    "elapsed_periods",
    "distribute_shortfall",
    # Policies
    "PolicyManager",
    # Claims
    "ClaimsPipeline",
    # Accounts
    "AccountRegistry",
]
