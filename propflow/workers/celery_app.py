# propflow/workers/celery_app.py
from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from ..config import settings

celery_app = Celery(
    "propflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["propflow.workers.tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "propflow.workers.tasks.*": {"queue": "daily"},
}

celery_app.conf.beat_schedule = {
    "sweep-expired-eviction-notices": {
        "task": "propflow.workers.tasks.sweep_expired_eviction_notices",
        "schedule": crontab(minute=0, hour=settings.eviction_sweep_hour_utc),
    },
    "daily-rent-check": {
        "task": "propflow.workers.tasks.run_daily_rent_check",
        "schedule": crontab(minute=0, hour=settings.rent_check_hour_utc),
    },
}
