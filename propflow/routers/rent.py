# propflow/routers/rent.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_hooks
from ..schemas import DailyCheckOut
from ..services.notifications import LifecycleHooks
from ..services.rent_automation import RentAutomationService

router = APIRouter(prefix="/rent", tags=["rent"])


@router.post("/daily-check", response_model=DailyCheckOut)
def run_daily_check(db: Session = Depends(get_db), hooks: LifecycleHooks = Depends(get_hooks)):
    result = RentAutomationService(db, hooks=hooks).run_daily_check()
    return DailyCheckOut(**result.to_dict())
