# propflow/services/rent_automation.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain.audit import audit_write
from ..domain.late_fees import (
    capped_increment,
    compute_late_fee,
    is_past_due,
    is_past_grace,
    recurring_fee_due,
    reminder_due,
)
from ..models import LateFeeSettings, Lease, RentPayment, RentReminderSettings, Unit
from .notifications import LifecycleHooks, safe_call

log = logging.getLogger("propflow.rent")

SYSTEM_ACTOR = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class DailyCheckResult:
    marked_overdue: int = 0
    late_fees_applied: int = 0
    reminders_sent: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RentAutomationService:
    def __init__(
        self,
        db: Session,
        *,
        hooks: Optional[LifecycleHooks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.hooks = hooks or LifecycleHooks()
        self._now = clock or _utcnow

    def _open_payments(self) -> list[RentPayment]:
        q = (
            select(RentPayment)
            .options(joinedload(RentPayment.lease).joinedload(Lease.unit).joinedload(Unit.property))
            .where(RentPayment.status.in_(["pending", "overdue"]))
            .order_by(RentPayment.due_date.asc(), RentPayment.id.asc())
        )
        return list(self.db.scalars(q).unique().all())

    def _landlord_id(self, payment: RentPayment) -> int:
        return payment.lease.unit.property.landlord_id

    def _late_fee_settings(self, landlord_id: int) -> Optional[LateFeeSettings]:
        return self.db.scalar(select(LateFeeSettings).where(LateFeeSettings.landlord_id == landlord_id))

    def _reminder_plan(self, landlord_id: int) -> tuple[list[int], Optional[str]]:
        row = self.db.scalar(select(RentReminderSettings).where(RentReminderSettings.landlord_id == landlord_id))
        if row is None:
            return list(settings.default_reminder_days_before), None
        if not row.enabled:
            return [], None
        return row.days_before(), row.custom_message

    def _late_fee_due(self, payment: RentPayment, cfg: LateFeeSettings, today: date) -> Optional[Decimal]:
        if payment.late_fee_applied_at is None:
            grace = cfg.grace_period_days if cfg.grace_period_days is not None else settings.default_grace_period_days
            if not is_past_grace(payment.due_date, today, grace):
                return None
            return compute_late_fee(payment.amount, cfg)

        if not cfg.recurring_fee:
            return None
        last = payment.late_fee_last_applied_at or payment.late_fee_applied_at
        if not recurring_fee_due(last.date(), today, cfg.recurring_interval):
            return None
        fee = capped_increment(compute_late_fee(payment.amount, cfg), payment.late_fee, cfg.max_fee)
        return fee if fee > 0 else None

    def _process_payment(self, payment: RentPayment, now: datetime, result: DailyCheckResult) -> None:
        today = now.date()
        landlord_id = self._landlord_id(payment)
        marked = False
        fee_cfg: Optional[LateFeeSettings] = None

        if payment.status == "pending" and is_past_due(payment.due_date, today):
            payment.status = "overdue"
            marked = True

        if payment.status == "overdue":
            cfg = self._late_fee_settings(landlord_id)
            fee = self._late_fee_due(payment, cfg, today) if cfg is not None and cfg.enabled else None
            if fee is not None:
                recurring = payment.late_fee_applied_at is not None
                payment.late_fee = (payment.late_fee or Decimal("0")) + fee
                if not recurring:
                    payment.late_fee_applied_at = now
                payment.late_fee_last_applied_at = now
                audit_write(
                    self.db,
                    landlord_id=landlord_id,
                    actor=SYSTEM_ACTOR,
                    action="rent_payment.late_fee",
                    entity_type="RentPayment",
                    entity_id=payment.id,
                    after={
                        "charge": fee,
                        "late_fee": payment.late_fee,
                        "recurring": recurring,
                        "fee_type": cfg.fee_type,
                        "due_date": payment.due_date,
                    },
                )
                fee_cfg = cfg

        self.db.commit()

        if marked:
            result.marked_overdue += 1
        if fee_cfg is not None:
            result.late_fees_applied += 1
            if fee_cfg.notify_tenant:
                safe_call(self.hooks.late_fee_applied, payment)

        if payment.status == "pending":
            days, message = self._reminder_plan(landlord_id)
            offset = reminder_due(payment.due_date, today, days)
            if offset is not None and safe_call(self.hooks.rent_reminder_due, payment, offset, message):
                result.reminders_sent += 1

    def run_daily_check(self) -> DailyCheckResult:
        """
        Daily pass over unpaid rent: mark overdue, apply late fees, emit reminders.

        A late fee is charged once after grace, then again each interval when the
        landlord turned recurring fees on, never beyond max_fee in total.

        One commit per payment; a failing payment is rolled back, logged and skipped.
        """
        now = self._now()
        result = DailyCheckResult()
        payment_ids = [p.id for p in self._open_payments()]

        for payment_id in payment_ids:
            try:
                payment = self.db.get(RentPayment, payment_id)
                if payment is None:
                    continue
                self._process_payment(payment, now, result)
            except Exception:
                self.db.rollback()
                result.failures += 1
                log.exception("daily rent check failed for payment", extra={"payment_id": payment_id})

        log.info(f"daily rent check done: {result.to_dict()}")
        return result
