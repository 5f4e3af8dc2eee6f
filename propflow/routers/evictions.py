# propflow/routers/evictions.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_hooks
from ..schemas import EvictionNoticeCreate, EvictionNoticeOut, EvictionStatusUpdate, SweepOut
from ..services.eviction_service import EvictionService
from ..services.notifications import LifecycleHooks

router = APIRouter(prefix="/evictions", tags=["evictions"])


def _svc(db: Session = Depends(get_db), hooks: LifecycleHooks = Depends(get_hooks)) -> EvictionService:
    return EvictionService(db, hooks=hooks)


@router.post("", response_model=EvictionNoticeOut, status_code=201)
def create_notice(
    payload: EvictionNoticeCreate,
    svc: EvictionService = Depends(_svc),
    actor: str | None = Header(default=None, alias="X-Actor"),
):
    row = svc.create_notice(
        payload.lease_id,
        payload.notice_type,
        payload.reason,
        amount_owed=payload.amount_owed,
        additional_notes=payload.additional_notes,
        actor=actor,
    )
    return EvictionNoticeOut.model_validate(row)


@router.post("/sweep", response_model=SweepOut)
def sweep_expired(svc: EvictionService = Depends(_svc)):
    return SweepOut(processed=svc.process_expired_notices())


@router.get("/{notice_id}", response_model=EvictionNoticeOut)
def get_notice(notice_id: int, svc: EvictionService = Depends(_svc)):
    return EvictionNoticeOut.model_validate(svc.get_notice(notice_id))


@router.post("/{notice_id}/status", response_model=EvictionNoticeOut)
def update_status(
    notice_id: int,
    payload: EvictionStatusUpdate,
    svc: EvictionService = Depends(_svc),
    actor: str | None = Header(default=None, alias="X-Actor"),
):
    row = svc.update_status(notice_id, payload.status, payload.notes, actor=actor)
    return EvictionNoticeOut.model_validate(row)


@router.post("/{notice_id}/complete", response_model=EvictionNoticeOut)
def complete_eviction(
    notice_id: int,
    svc: EvictionService = Depends(_svc),
    actor: str | None = Header(default=None, alias="X-Actor"),
):
    return EvictionNoticeOut.model_validate(svc.complete_eviction(notice_id, actor=actor))
