"""Policy lifecycle and coverage endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, StrictInt

from shieldledger import Ledger, PolicyMetadata, PolicyStatus

from service.dependencies import get_ledger

router = APIRouter(prefix="/api/policies", tags=["Policies"])


class CreatePolicyRequest(BaseModel):
    """Admin request for a new DRAFT policy. Amounts in token base units."""
    creator: str = Field(..., min_length=1)
    coverage_amount: StrictInt
    premium_amount: StrictInt
    payout_amount: StrictInt
    term_days: StrictInt
    trigger_description: str = ""
    details: str = ""


class CoverageRequest(BaseModel):
    user: str = Field(..., min_length=1)


def _status_body(policy_id: int, status: PolicyStatus):
    return {"policy_id": policy_id, "status": status.value}


@router.post("", status_code=201)
def create_policy(request: CreatePolicyRequest, ledger: Ledger = Depends(get_ledger)):
    metadata = PolicyMetadata(**request.model_dump(exclude={"creator"}))
    policy_id = ledger.create_policy(request.creator, metadata)
    return {"policy_id": policy_id}


@router.get("")
def list_policies(status: Optional[PolicyStatus] = None, ledger: Ledger = Depends(get_ledger)):
    return [p.to_dict() for p in ledger.list_policies(status)]


@router.get("/due-for-expiry")
def due_for_expiry(now: Optional[int] = None, ledger: Ledger = Depends(get_ledger)):
    """Policies an external scheduler should expire."""
    return [p.to_dict() for p in ledger.policies_due_for_expiry(now)]


@router.get("/coverages/{user}")
def user_coverages(user: str, ledger: Ledger = Depends(get_ledger)):
    return [c.to_dict() for c in ledger.get_user_policies(user)]


@router.get("/{policy_id}")
def get_policy(policy_id: int, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_policy(policy_id).to_dict()


@router.post("/{policy_id}/activate")
def activate_policy(policy_id: int, ledger: Ledger = Depends(get_ledger)):
    return _status_body(policy_id, ledger.activate_policy(policy_id))


@router.post("/{policy_id}/pause")
def pause_policy(policy_id: int, ledger: Ledger = Depends(get_ledger)):
    return _status_body(policy_id, ledger.pause_policy(policy_id))


@router.post("/{policy_id}/expire")
def expire_policy(policy_id: int, ledger: Ledger = Depends(get_ledger)):
    return _status_body(policy_id, ledger.expire_policy(policy_id))


@router.post("/{policy_id}/buy", status_code=201)
def buy_policy(policy_id: int, request: CoverageRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.buy_policy(request.user, policy_id).to_dict()


@router.post("/{policy_id}/renew")
def renew_coverage(policy_id: int, request: CoverageRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.renew_coverage(request.user, policy_id).to_dict()


@router.post("/{policy_id}/cancel-auto-renewal")
def cancel_auto_renewal(policy_id: int, request: CoverageRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.cancel_auto_renewal(request.user, policy_id).to_dict()
