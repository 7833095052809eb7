"""
ShieldLedger Account and Reserve Models

- Account: per-address profile plus the address's claim on pooled capital
- Reserve: the single global pool aggregate

An Account's stake and accrued_yield are claims against the Reserve, not
separately held balances. The Reserve keeps running totals so the
conservation invariant can be checked without scanning every account:

    total_funds == total_staked + surplus,  surplus >= 0
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from .base import LedgerEntity
from .enums import UserStatus


RESERVE_KEY = "reserve"


@dataclass(frozen=True)
class Account(LedgerEntity):
    """
    A funder or policy holder.

    Attributes:
        address: Authenticated identity (wallet address)
        status: INACTIVE, ACTIVE or BANNED (admin controlled)
        kyc_verified: KYC flag set by an admin
        policies_count: Number of coverages ever bought
        stake: Principal staked into the reserve (base units)
        accrued_yield: Yield checkpointed at stake changes, not yet paid
        last_yield_claimed: Start of the current accrual window (unix seconds)
        registered_at: First interaction time
        yield_claimed_total: Lifetime yield paid out to this account
        version: Store version, 0 until first commit
    """
    kind: ClassVar[str] = "account"

    address: str
    status: UserStatus = UserStatus.ACTIVE
    kyc_verified: bool = False
    policies_count: int = 0
    stake: int = 0
    accrued_yield: int = 0
    last_yield_claimed: int = 0
    registered_at: int = 0
    yield_claimed_total: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return self.address

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_banned(self) -> bool:
        return self.status == UserStatus.BANNED

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        data = dict(data)
        data["status"] = UserStatus(data["status"])
        return super().from_dict(data)


@dataclass(frozen=True)
class Reserve(LedgerEntity):
    """
    The global reserve pool (singleton).

    Attributes:
        total_funds: Everything the pool holds: principal plus premium surplus
        total_stakers: Number of accounts with stake > 0
        last_yield_distribution: Last time any yield was paid out
        yield_rate_bps: Yield per distribution period, in basis points
        total_staked: Running sum of all account stakes
        outstanding_liabilities: Sum of APPROVED-but-unpaid claim amounts
        total_premiums: Lifetime premiums collected
        total_payouts: Lifetime claim payouts
        total_yield_paid: Lifetime yield paid to funders
    """
    kind: ClassVar[str] = "reserve"

    total_funds: int = 0
    total_stakers: int = 0
    last_yield_distribution: int = 0
    yield_rate_bps: int = 0
    total_staked: int = 0
    outstanding_liabilities: int = 0
    total_premiums: int = 0
    total_payouts: int = 0
    total_yield_paid: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return RESERVE_KEY

    @property
    def surplus(self) -> int:
        """Premium income not yet distributed as yield or payouts."""
        return self.total_funds - self.total_staked

    @property
    def available_funds(self) -> int:
        """Surplus not earmarked for approved claims; the yield budget."""
        return max(0, self.total_funds - self.total_staked - self.outstanding_liabilities)
