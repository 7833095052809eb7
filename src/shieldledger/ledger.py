"""
ShieldLedger Facade

One object exposing every ledger operation with shared configuration, clock
and store. Each call is its own atomic unit.

Committed operations are logged at INFO with structured fields, rejected ones
at WARNING. Anything that is not a LedgerError is wrapped as InternalError
with the original exception chained.

Usage:
    from shieldledger import Ledger, load_config

    ledger = Ledger(load_config("ledger.yaml"))
    ledger.register_user("0xfunder")
    ledger.stake("0xfunder", 1_000_000)
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar, Union

from .clock import Clock, system_clock
from .config import LedgerConfig
from .engine import AccountRegistry, ClaimsPipeline, PolicyManager, ReserveEngine
from .exceptions import INTERNAL, InternalError, LedgerError
from .models import (
    Account,
    Claim,
    ClaimStatus,
    Coverage,
    LedgerEntity,
    Policy,
    PolicyMetadata,
    PolicyStatus,
    Reserve,
    UserStatus,
)
from .store import LedgerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def check_invariants(entities: list[LedgerEntity]) -> dict[str, bool]:
    """
    Evaluate the reserve invariants over a consistent set of entities.

    Returns:
        check name -> whether it holds
    """
    reserve = next(e for e in entities if isinstance(e, Reserve))
    accounts = [e for e in entities if isinstance(e, Account)]
    claims = {e.id: e for e in entities if isinstance(e, Claim)}
    coverages = [e for e in entities if isinstance(e, Coverage)]
    approved = [c for c in claims.values() if c.status == ClaimStatus.APPROVED]

    return {
        "conservation": reserve.total_staked == sum(a.stake for a in accounts),
        "surplus_non_negative": reserve.surplus >= 0,
        "staker_count": reserve.total_stakers == sum(1 for a in accounts if a.stake > 0),
        "liabilities": reserve.outstanding_liabilities == sum(c.amount for c in approved),
        "non_negative_stakes": all(a.stake >= 0 for a in accounts),
        "open_claims": all(
            c.open_claim_id in claims and claims[c.open_claim_id].is_open
            for c in coverages if c.open_claim_id
        ),
    }


class Ledger:
    """
    Reserve & Policy Ledger.

    Args:
        config: Settings; defaults to LedgerConfig()
        clock: Time source returning integer UNIX seconds
        store: Pre-built store (tests); built from config when omitted
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        clock: Clock = system_clock,
        store: Optional[LedgerStore] = None,
    ):
        self.config = config or LedgerConfig()
        self.clock = clock
        self.store = store or LedgerStore(
            wal_path=self.config.wal_path,
            ledger_id=self.config.ledger_id,
            fsync_policy=self.config.fsync_policy,
            max_retries=self.config.max_retries,
            retry_backoff_ms=self.config.retry_backoff_ms,
            initial_yield_rate_bps=self.config.yield_rate_bps,
        )
        period = self.config.yield_period_seconds
        self.reserve = ReserveEngine(self.store, clock, period)
        self.policies = PolicyManager(self.store, clock)
        self.claims = ClaimsPipeline(self.store, clock, period)
        self.accounts = AccountRegistry(self.store, clock)

    def _execute(self, operation: str, fn: Callable[[], T], **fields: Any) -> T:
        start = time.perf_counter()
        try:
            result = fn()
        except LedgerError as e:
            level = logging.ERROR if e.category == INTERNAL else logging.WARNING
            logger.log(
                level,
                f"{operation} rejected: {e.code}",
                extra={"operation": operation, "error_code": e.code, **fields},
            )
            raise
        except Exception as e:
            logger.exception(f"{operation} failed unexpectedly", extra={"operation": operation, **fields})
            raise InternalError(
                message=f"{operation} failed: {e}",
                details={"operation": operation, "internal_error": type(e).__name__},
            ) from e

        duration_ms = round((time.perf_counter() - start) * 1000, 3)
        logger.info(
            f"{operation} committed",
            extra={"operation": operation, "duration_ms": duration_ms, **fields},
        )
        return result

    # -------------------------------------------------------------------------
    # Reserve
    # -------------------------------------------------------------------------

    def stake(self, address: str, amount: int) -> int:
        return self._execute("stake", lambda: self.reserve.stake(address, amount),
                             address=address, amount=amount)

    def unstake(self, address: str, amount: int) -> int:
        return self._execute("unstake", lambda: self.reserve.unstake(address, amount),
                             address=address, amount=amount)

    def claim_yield(self, address: str) -> int:
        return self._execute("claim_yield", lambda: self.reserve.claim_yield(address), address=address)

    def set_yield_rate(self, bps: int) -> int:
        return self._execute("set_yield_rate", lambda: self.reserve.set_yield_rate(bps), amount=bps)

    def get_reserve_info(self) -> Reserve:
        return self.reserve.get_reserve_info()

    def get_funder_stake(self, address: str) -> int:
        return self.reserve.get_funder_stake(address)

    def get_yield_info(self, address: str) -> dict[str, Any]:
        return self.reserve.get_yield_info(address)

    def get_available_funds(self) -> int:
        return self.reserve.get_available_funds()

    def get_current_yield_rate(self) -> int:
        return self.reserve.get_current_yield_rate()

    # -------------------------------------------------------------------------
    # Policies and coverage
    # -------------------------------------------------------------------------

    def create_policy(self, creator: str, metadata: Union[PolicyMetadata, dict[str, Any]]) -> int:
        return self._execute("create_policy", lambda: self.policies.create_policy(creator, metadata),
                             address=creator)

    def activate_policy(self, policy_id: int) -> PolicyStatus:
        return self._execute("activate_policy", lambda: self.policies.activate_policy(policy_id),
                             policy_id=policy_id)

    def pause_policy(self, policy_id: int) -> PolicyStatus:
        return self._execute("pause_policy", lambda: self.policies.pause_policy(policy_id),
                             policy_id=policy_id)

    def expire_policy(self, policy_id: int) -> PolicyStatus:
        return self._execute("expire_policy", lambda: self.policies.expire_policy(policy_id),
                             policy_id=policy_id)

    def get_policy(self, policy_id: int) -> Policy:
        return self.policies.get_policy(policy_id)

    def list_policies(self, status: Optional[PolicyStatus] = None) -> list[Policy]:
        return self.policies.list_policies(status)

    def policies_due_for_expiry(self, now: Optional[int] = None) -> list[Policy]:
        return self.policies.policies_due_for_expiry(now)

    def buy_policy(self, user: str, policy_id: int) -> Coverage:
        return self._execute("buy_policy", lambda: self.policies.buy_policy(user, policy_id),
                             address=user, policy_id=policy_id)

    def renew_coverage(self, user: str, policy_id: int) -> Coverage:
        return self._execute("renew_coverage", lambda: self.policies.renew_coverage(user, policy_id),
                             address=user, policy_id=policy_id)

    def cancel_auto_renewal(self, user: str, policy_id: int) -> Coverage:
        return self._execute("cancel_auto_renewal", lambda: self.policies.cancel_auto_renewal(user, policy_id),
                             address=user, policy_id=policy_id)

    def get_coverage(self, user: str, policy_id: int) -> Coverage:
        return self.policies.get_coverage(user, policy_id)

    def get_user_policies(self, user: str) -> list[Coverage]:
        return self.policies.get_user_policies(user)

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def submit_claim(
        self,
        user: str,
        policy_id: int,
        evidence_hash: str,
        amount: Optional[int] = None,
    ) -> int:
        return self._execute(
            "submit_claim",
            lambda: self.claims.submit_claim(user, policy_id, evidence_hash, amount),
            address=user, policy_id=policy_id, amount=amount,
        )

    def process_claim(self, claim_id: int, external_data_hash: str, approved: bool) -> ClaimStatus:
        return self._execute(
            "process_claim",
            lambda: self.claims.process_claim(claim_id, external_data_hash, approved),
            claim_id=claim_id,
        )

    def payout_claim(self, claim_id: int) -> int:
        return self._execute("payout_claim", lambda: self.claims.payout_claim(claim_id), claim_id=claim_id)

    def get_claim(self, claim_id: int) -> Claim:
        return self.claims.get_claim(claim_id)

    def get_claims_for_policy(self, policy_id: int) -> list[Claim]:
        return self.claims.get_claims_for_policy(policy_id)

    def get_user_claims(self, user: str) -> list[Claim]:
        return self.claims.get_user_claims(user)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def register_user(self, address: str) -> Account:
        return self._execute("register_user", lambda: self.accounts.register_user(address), address=address)

    def set_user_status(self, address: str, status: Union[UserStatus, str]) -> Account:
        return self._execute("set_user_status", lambda: self.accounts.set_user_status(address, status),
                             address=address)

    def set_kyc_verified(self, address: str, verified: bool) -> Account:
        return self._execute("set_kyc_verified", lambda: self.accounts.set_kyc_verified(address, verified),
                             address=address)

    def get_user_profile(self, address: str) -> Account:
        return self.accounts.get_user_profile(address)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def check_invariants(self) -> dict[str, bool]:
        return check_invariants(list(self.store.snapshot().values()))

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> Ledger:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
