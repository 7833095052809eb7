"""
ShieldLedger Account Registry

User registration and the admin-controlled status and KYC flags. Accounts are
never deleted; banning is the only way to exclude one.
"""
from __future__ import annotations

from typing import Union

from ..clock import Clock, system_clock
from ..exceptions import AccountNotActiveError, InvalidInputError
from ..models import Account, UserStatus
from ..store import LedgerStore, Transaction


class AccountRegistry:
    def __init__(self, store: LedgerStore, clock: Clock = system_clock):
        self.store = store
        self.clock = clock

    def register_user(self, address: str) -> Account:
        """
        Create an ACTIVE account, or return the existing profile.

        Raises:
            AccountNotActiveError: the address is banned
        """
        if not isinstance(address, str) or not address.strip():
            raise InvalidInputError(
                "Cannot register an empty address",
                details={"address": address},
            )

        def op(txn: Transaction) -> Transaction:
            now = self.clock()
            existing = txn.get(Account, address)
            if existing is not None:
                if existing.is_banned:
                    raise AccountNotActiveError(
                        f"Account {address} is banned",
                        details={"address": address, "status": existing.status.value},
                    )
                return txn
            txn.put(Account(
                address=address,
                status=UserStatus.ACTIVE,
                registered_at=now,
                last_yield_claimed=now,
            ))
            return txn

        return self.store.run(op, "register_user").committed(Account, address)

    def set_user_status(self, address: str, status: Union[UserStatus, str]) -> Account:
        try:
            status = UserStatus(status)
        except ValueError:
            raise InvalidInputError(
                f"Unknown account status: {status!r}",
                details={"allowed": [s.value for s in UserStatus]},
            ) from None
        return self.store.with_account(address, lambda a: a.evolve(status=status))

    def set_kyc_verified(self, address: str, verified: bool) -> Account:
        return self.store.with_account(address, lambda a: a.evolve(kyc_verified=bool(verified)))

    def get_user_profile(self, address: str) -> Account:
        return self.store.require(Account, address)

    def list_accounts(self) -> list[Account]:
        return self.store.all(Account)
