"""Ledger instance shared by the routers, set from main on startup."""

from typing import Optional

from fastapi import HTTPException

from shieldledger import Ledger

_ledger: Optional[Ledger] = None


def set_ledger(ledger: Optional[Ledger]):
    """Set the ledger from the main app (or a test)."""
    global _ledger
    _ledger = ledger


def get_ledger() -> Ledger:
    if _ledger is None:
        raise HTTPException(status_code=500, detail="Ledger not initialized")
    return _ledger
