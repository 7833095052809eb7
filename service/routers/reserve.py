"""Reserve endpoints: funder stake, yield and pool totals."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, StrictInt

from shieldledger import Ledger
from shieldledger.amounts import format_basis_points

from service.dependencies import get_ledger

router = APIRouter(prefix="/api/reserve", tags=["Reserve"])


class StakeRequest(BaseModel):
    """Stake or unstake principal, in token base units."""
    address: str = Field(..., min_length=1)
    amount: StrictInt


class ClaimYieldRequest(BaseModel):
    address: str = Field(..., min_length=1)


class YieldRateRequest(BaseModel):
    bps: StrictInt = Field(..., description="Yield per period in basis points (0..10000)")


def _rate_body(bps: int) -> dict[str, Any]:
    return {"yield_rate_bps": bps, "display": format_basis_points(bps)}


@router.get("")
def reserve_info(ledger: Ledger = Depends(get_ledger)):
    """Reserve totals with derived surplus and available funds."""
    reserve = ledger.get_reserve_info()
    return {
        **reserve.to_dict(),
        "surplus": reserve.surplus,
        "available_funds": reserve.available_funds,
    }


@router.post("/stake")
def stake(request: StakeRequest, ledger: Ledger = Depends(get_ledger)):
    new_stake = ledger.stake(request.address, request.amount)
    return {"address": request.address, "stake": new_stake}


@router.post("/unstake")
def unstake(request: StakeRequest, ledger: Ledger = Depends(get_ledger)):
    new_stake = ledger.unstake(request.address, request.amount)
    return {"address": request.address, "stake": new_stake}


@router.post("/claim-yield")
def claim_yield(request: ClaimYieldRequest, ledger: Ledger = Depends(get_ledger)):
    amount = ledger.claim_yield(request.address)
    return {"address": request.address, "amount": amount}


@router.get("/yield-rate")
def get_yield_rate(ledger: Ledger = Depends(get_ledger)):
    return _rate_body(ledger.get_current_yield_rate())


@router.put("/yield-rate")
def set_yield_rate(request: YieldRateRequest, ledger: Ledger = Depends(get_ledger)):
    return _rate_body(ledger.set_yield_rate(request.bps))


@router.get("/available-funds")
def available_funds(ledger: Ledger = Depends(get_ledger)):
    return {"available_funds": ledger.get_available_funds()}


@router.get("/stakes/{address}")
def funder_stake(address: str, ledger: Ledger = Depends(get_ledger)):
    return {"address": address, "stake": ledger.get_funder_stake(address)}


@router.get("/yield/{address}")
def yield_info(address: str, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_yield_info(address)
