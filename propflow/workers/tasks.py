# propflow/workers/tasks.py
from __future__ import annotations

import logging

from ..db import SessionLocal
from ..services.eviction_service import EvictionService
from ..services.rent_automation import RentAutomationService
from .celery_app import celery_app

log = logging.getLogger("propflow.workers")


@celery_app.task(name="propflow.workers.tasks.sweep_expired_eviction_notices")
def sweep_expired_eviction_notices() -> dict:
    """
    Daily eviction sweep. Not retried: items that failed are picked up again
    by tomorrow's run because they are still open and past deadline.
    """
    db = SessionLocal()
    try:
        processed = EvictionService(db).process_expired_notices()
        return {"ok": True, "processed": processed}
    finally:
        db.close()


@celery_app.task(name="propflow.workers.tasks.run_daily_rent_check")
def run_daily_rent_check() -> dict:
    db = SessionLocal()
    try:
        result = RentAutomationService(db).run_daily_check()
        return {"ok": True, **result.to_dict()}
    finally:
        db.close()
