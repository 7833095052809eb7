"""Account registration and admin flags."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, StrictBool

from shieldledger import Ledger, UserStatus

from service.dependencies import get_ledger

router = APIRouter(prefix="/api/accounts", tags=["Accounts"])


class RegisterRequest(BaseModel):
    address: str = Field(..., min_length=1)


class StatusRequest(BaseModel):
    status: UserStatus


class KycRequest(BaseModel):
    verified: StrictBool


@router.post("", status_code=201)
def register_user(request: RegisterRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.register_user(request.address).to_dict()


@router.get("/{address}")
def get_user_profile(address: str, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_user_profile(address).to_dict()


@router.put("/{address}/status")
def set_user_status(address: str, request: StatusRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.set_user_status(address, request.status).to_dict()


@router.put("/{address}/kyc")
def set_kyc_verified(address: str, request: KycRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.set_kyc_verified(address, request.verified).to_dict()
