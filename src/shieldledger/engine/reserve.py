"""
ShieldLedger Reserve Accounting Engine

Staked capital and yield for the reserve pool.

Yield accrues per whole period at the reserve's current rate:

    pending = accrued_yield + stake * yield_rate_bps * periods // 10000
    periods = (now - last_yield_claimed) // yield_period_seconds

Before any change to an account's principal the whole periods elapsed are
checkpointed into accrued_yield and last_yield_claimed moves forward by
exactly those periods. A top-up therefore never earns retroactively and a
partially elapsed period is carried over.

Every public operation is one store transaction; nothing is written when any
check fails.
"""
from __future__ import annotations

from typing import Any, Iterable

from ..amounts import U32_MAX, apply_bps, checked_add, checked_sub, require_positive, validate_bps
from ..clock import Clock, system_clock
from ..exceptions import (
    AccountNotActiveError,
    InsufficientStakeError,
    NoYieldAvailableError,
    ReserveUnderfundedError,
)
from ..models import RESERVE_KEY, Account, Reserve
from ..store import LedgerStore, Transaction

DEFAULT_YIELD_PERIOD_SECONDS = 86_400


# =============================================================================
# Pure yield arithmetic
# =============================================================================

def elapsed_periods(last_yield_claimed: int, now: int, period_seconds: int) -> int:
    if now <= last_yield_claimed:
        return 0
    return (now - last_yield_claimed) // period_seconds


def pending_yield(
    account: Account,
    reserve: Reserve,
    now: int,
    period_seconds: int = DEFAULT_YIELD_PERIOD_SECONDS,
) -> int:
    """Yield the account could claim at `now`. Does not touch the store."""
    periods = elapsed_periods(account.last_yield_claimed, now, period_seconds)
    earned = apply_bps(account.stake, reserve.yield_rate_bps, periods) if account.stake else 0
    return checked_add(account.accrued_yield, earned, "accrued_yield")


def checkpoint_yield(
    account: Account,
    reserve: Reserve,
    now: int,
    period_seconds: int = DEFAULT_YIELD_PERIOD_SECONDS,
) -> Account:
    """
    Fold whole elapsed periods into accrued_yield.

    An account without stake has nothing accruing, so its window restarts
    at `now`.
    """
    if account.stake == 0:
        return account.evolve(last_yield_claimed=now)

    periods = elapsed_periods(account.last_yield_claimed, now, period_seconds)
    if periods == 0:
        return account
    return account.evolve(
        accrued_yield=pending_yield(account, reserve, now, period_seconds),
        last_yield_claimed=account.last_yield_claimed + periods * period_seconds,
    )


def distribute_shortfall(stakers: Iterable[Account], shortfall: int) -> dict[str, int]:
    """
    Split a loss across stakers pro rata to stake.

    Floors each share, then hands the remaining units to the largest
    fractional remainders, ties broken by address. The shares sum to
    exactly `shortfall` and no share exceeds its stake.

    Returns:
        address -> amount to deduct (only non-zero entries)
    """
    holders = sorted((a for a in stakers if a.stake > 0), key=lambda a: a.address)
    total = sum(a.stake for a in holders)
    if shortfall <= 0:
        return {}
    if shortfall > total:
        raise ReserveUnderfundedError(
            "Shortfall exceeds total stake",
            details={"shortfall": shortfall, "total_staked": total},
        )

    shares: dict[str, int] = {}
    remainders: list[tuple[int, str]] = []
    for account in holders:
        base, remainder = divmod(account.stake * shortfall, total)
        shares[account.address] = base
        remainders.append((remainder, account.address))

    leftover = shortfall - sum(shares.values())
    remainders.sort(key=lambda item: (-item[0], item[1]))
    for _, address in remainders[:leftover]:
        shares[address] += 1

    return {address: cut for address, cut in shares.items() if cut}


# =============================================================================
# Engine
# =============================================================================

class ReserveEngine:
    """
    Funder operations against the reserve pool.

    Usage:
        engine = ReserveEngine(store, clock=lambda: 1_700_000_000)
        engine.stake("0xfunder", 1_000_000)
        engine.claim_yield("0xfunder")
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock = system_clock,
        yield_period_seconds: int = DEFAULT_YIELD_PERIOD_SECONDS,
    ):
        self.store = store
        self.clock = clock
        self.yield_period_seconds = yield_period_seconds

    def stake(self, address: str, amount: int) -> int:
        """Add principal to the pool. Returns the account's new stake."""
        amount = require_positive(amount)

        def op(txn: Transaction) -> int:
            now = self.clock()
            account = txn.account(address)
            if not account.is_active:
                raise AccountNotActiveError(
                    f"Account {address} is {account.status.value}",
                    details={"address": address, "status": account.status.value},
                )
            reserve = txn.reserve()
            first_stake = account.stake == 0

            account = checkpoint_yield(account, reserve, now, self.yield_period_seconds)
            new_stake = checked_add(account.stake, amount, "stake")

            txn.put(account.evolve(stake=new_stake))
            txn.put(reserve.evolve(
                total_funds=checked_add(reserve.total_funds, amount, "total_funds"),
                total_staked=checked_add(reserve.total_staked, amount, "total_staked"),
                total_stakers=checked_add(
                    reserve.total_stakers, 1 if first_stake else 0, "total_stakers", U32_MAX
                ),
            ))
            return new_stake

        return self.store.run(op, "stake")

    def unstake(self, address: str, amount: int) -> int:
        """Withdraw principal. Returns the account's new stake."""
        amount = require_positive(amount)

        def op(txn: Transaction) -> int:
            now = self.clock()
            account = txn.account(address)
            if account.is_banned:
                raise AccountNotActiveError(
                    f"Account {address} is banned",
                    details={"address": address, "status": account.status.value},
                )
            if amount > account.stake:
                raise InsufficientStakeError(
                    f"Cannot unstake {amount}, stake is {account.stake}",
                    details={"address": address, "requested": amount, "stake": account.stake},
                )
            reserve = txn.reserve()
            if reserve.total_funds - amount < reserve.outstanding_liabilities:
                raise ReserveUnderfundedError(
                    "Unstake would leave approved claims unfunded",
                    details={
                        "requested": amount,
                        "total_funds": reserve.total_funds,
                        "outstanding_liabilities": reserve.outstanding_liabilities,
                    },
                )

            account = checkpoint_yield(account, reserve, now, self.yield_period_seconds)
            new_stake = checked_sub(account.stake, amount, "stake")

            txn.put(account.evolve(stake=new_stake))
            txn.put(reserve.evolve(
                total_funds=checked_sub(reserve.total_funds, amount, "total_funds"),
                total_staked=checked_sub(reserve.total_staked, amount, "total_staked"),
                total_stakers=checked_sub(
                    reserve.total_stakers, 1 if new_stake == 0 else 0, "total_stakers"
                ),
            ))
            return new_stake

        return self.store.run(op, "unstake")

    def claim_yield(self, address: str) -> int:
        """Pay out the account's pending yield from the premium surplus."""

        def op(txn: Transaction) -> int:
            now = self.clock()
            account = txn.account(address)
            if account.is_banned:
                raise AccountNotActiveError(
                    f"Account {address} is banned",
                    details={"address": address, "status": account.status.value},
                )
            reserve = txn.reserve()
            account = checkpoint_yield(account, reserve, now, self.yield_period_seconds)
            amount = account.accrued_yield
            if amount <= 0:
                raise NoYieldAvailableError(
                    f"No yield available for {address}",
                    details={"address": address},
                )
            available = reserve.available_funds
            if available < amount:
                raise ReserveUnderfundedError(
                    "Premium surplus cannot cover pending yield",
                    details={"pending_yield": amount, "available_funds": available},
                )

            txn.put(account.evolve(
                accrued_yield=0,
                yield_claimed_total=checked_add(account.yield_claimed_total, amount, "yield_claimed_total"),
            ))
            txn.put(reserve.evolve(
                total_funds=checked_sub(reserve.total_funds, amount, "total_funds"),
                total_yield_paid=checked_add(reserve.total_yield_paid, amount, "total_yield_paid"),
                last_yield_distribution=now,
            ))
            return amount

        return self.store.run(op, "claim_yield")

    def set_yield_rate(self, bps: int) -> int:
        """Admin override of the per-period rate. Applies to all unclaimed periods."""
        bps = validate_bps(bps)
        return self.store.with_reserve(lambda r: r.evolve(yield_rate_bps=bps)).yield_rate_bps

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_reserve_info(self) -> Reserve:
        return self.store.require(Reserve, RESERVE_KEY)

    def get_funder_stake(self, address: str) -> int:
        return self.store.require(Account, address).stake

    def get_available_funds(self) -> int:
        return self.get_reserve_info().available_funds

    def get_current_yield_rate(self) -> int:
        return self.get_reserve_info().yield_rate_bps

    def get_pending_yield(self, address: str) -> int:
        return self.get_yield_info(address)["pending_yield"]

    def get_yield_info(self, address: str) -> dict[str, Any]:
        """Pending yield and accrual window, read from one consistent view."""

        def op(txn: Transaction) -> dict[str, Any]:
            now = self.clock()
            account = txn.account(address)
            reserve = txn.reserve()
            return {
                "address": address,
                "stake": account.stake,
                "pending_yield": pending_yield(account, reserve, now, self.yield_period_seconds),
                "accrued_yield": account.accrued_yield,
                "last_yield_claimed": account.last_yield_claimed,
                "yield_claimed_total": account.yield_claimed_total,
                "yield_rate_bps": reserve.yield_rate_bps,
            }

        return self.store.run(op, "get_yield_info")
