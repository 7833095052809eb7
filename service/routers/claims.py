"""Claim submission, adjudication and payout endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, StrictBool, StrictInt

from shieldledger import Ledger

from service.dependencies import get_ledger

router = APIRouter(prefix="/api/claims", tags=["Claims"])


class SubmitClaimRequest(BaseModel):
    user: str = Field(..., min_length=1)
    policy_id: StrictInt
    evidence_hash: str = ""
    amount: Optional[StrictInt] = Field(None, description="Defaults to the policy's payout amount")


class ProcessClaimRequest(BaseModel):
    """Oracle verdict for a PENDING claim."""
    external_data_hash: str
    approved: StrictBool


@router.post("", status_code=201)
def submit_claim(request: SubmitClaimRequest, ledger: Ledger = Depends(get_ledger)):
    claim_id = ledger.submit_claim(request.user, request.policy_id, request.evidence_hash, request.amount)
    return {"claim_id": claim_id}


@router.get("/policy/{policy_id}")
def claims_for_policy(policy_id: int, ledger: Ledger = Depends(get_ledger)):
    return [c.to_dict() for c in ledger.get_claims_for_policy(policy_id)]


@router.get("/user/{user}")
def user_claims(user: str, ledger: Ledger = Depends(get_ledger)):
    return [c.to_dict() for c in ledger.get_user_claims(user)]


@router.get("/{claim_id}")
def get_claim(claim_id: int, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_claim(claim_id).to_dict()


@router.post("/{claim_id}/process")
def process_claim(claim_id: int, request: ProcessClaimRequest, ledger: Ledger = Depends(get_ledger)):
    status = ledger.process_claim(claim_id, request.external_data_hash, request.approved)
    return {"claim_id": claim_id, "status": status.value}


@router.post("/{claim_id}/payout")
def payout_claim(claim_id: int, ledger: Ledger = Depends(get_ledger)):
    return {"claim_id": claim_id, "amount": ledger.payout_claim(claim_id)}
