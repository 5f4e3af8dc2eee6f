# propflow/routers/escrow.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..clients.stripe_processor import StripeProcessor
from ..db import get_db
from ..deps import get_processor
from ..schemas import (
    EscrowFundIn,
    EscrowRefundIn,
    EscrowRefundOut,
    EscrowReleaseOut,
    JobEscrowOut,
    MilestoneReleaseIn,
)
from ..services.escrow_service import EscrowService, MilestonePlan, processor_id

router = APIRouter(prefix="/escrow", tags=["escrow"])


def _svc(db: Session = Depends(get_db), processor: StripeProcessor = Depends(get_processor)) -> EscrowService:
    return EscrowService(db, processor)


@router.post("/jobs/fund", response_model=JobEscrowOut, status_code=201)
def fund_escrow(payload: EscrowFundIn, svc: EscrowService = Depends(_svc)):
    escrow = svc.fund_escrow(
        payload.job_id,
        payload.customer_stripe_id,
        [MilestonePlan(title=m.title, amount=m.amount) for m in payload.milestones],
    )
    return JobEscrowOut.model_validate(escrow)


@router.post("/milestones/{milestone_id}/release", response_model=EscrowReleaseOut)
def release_milestone(milestone_id: int, payload: MilestoneReleaseIn, svc: EscrowService = Depends(_svc)):
    result = svc.release_milestone_payment(
        milestone_id,
        payload.payment_intent_id,
        payload.contractor_account_id,
        payload.customer_stripe_id,
        payload.payment_method_id,
    )
    return EscrowReleaseOut.model_validate(result.release)


@router.post("/{escrow_id}/refund", response_model=EscrowRefundOut)
def refund_escrow(escrow_id: int, payload: EscrowRefundIn, svc: EscrowService = Depends(_svc)):
    processor_result = svc.refund_escrow(escrow_id, payload.payment_intent_id, payload.amount, payload.reason)
    escrow = svc.get_escrow(escrow_id)
    return EscrowRefundOut(
        escrow_id=escrow.id,
        status=escrow.status,
        refunded_at=escrow.refunded_at,
        processor_id=processor_id(processor_result),
    )
