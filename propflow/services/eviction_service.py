# propflow/services/eviction_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from ..domain.audit import audit_write
from ..domain.eviction_rules import (
    BLOCKED_LEASE_STATUSES,
    OPEN_STATUSES,
    EvictionStatus,
    NoticeType,
    append_note,
    can_transition,
    compute_deadline,
    parse_notice_type,
    parse_status,
    timestamp_field_for,
)
from ..errors import InvalidStateError, InvalidTransitionError, NotFoundError
from ..models import EvictionNotice, Lease, Property, Unit
from .notifications import LifecycleHooks, safe_call

log = logging.getLogger("propflow.evictions")

SYSTEM_ACTOR = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _money(v) -> Optional[Decimal]:
    if v is None:
        return None
    d = Decimal(str(v))
    if d < 0:
        raise ValueError("amount_owed cannot be negative")
    return d.quantize(Decimal("0.01"))


class EvictionService:
    """
    Eviction notice lifecycle for one database session.

    Collaborators are injected: `hooks` receives notice-served / eviction-
    completed callbacks (tenant notification and offboarding live there),
    `clock` returns naive UTC datetimes and exists so deadlines can be tested.
    """

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

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def _load_lease(self, lease_id: int) -> Lease:
        q = (
            select(Lease)
            .options(
                joinedload(Lease.tenant),
                joinedload(Lease.unit).joinedload(Unit.property).joinedload(Property.landlord),
            )
            .where(Lease.id == int(lease_id))
        )
        lease = self.db.scalar(q)
        if lease is None:
            raise NotFoundError("Lease", lease_id)
        return lease

    def get_notice(self, notice_id: int, *, for_update: bool = False) -> EvictionNotice:
        q = select(EvictionNotice).where(EvictionNotice.id == int(notice_id))
        if for_update:
            q = q.with_for_update()
        notice = self.db.scalar(q)
        if notice is None:
            raise NotFoundError("EvictionNotice", notice_id)
        return notice

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def create_notice(
        self,
        lease_id: int,
        notice_type: str | NoticeType,
        reason: str,
        amount_owed=None,
        additional_notes: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> EvictionNotice:
        lease = self._load_lease(lease_id)

        lease_status = (lease.status or "").strip().lower()
        if lease_status in BLOCKED_LEASE_STATUSES:
            raise InvalidStateError(
                f"Cannot serve an eviction notice on a {lease_status} lease",
                details={"lease_id": lease.id, "lease_status": lease_status},
            )

        ntype = parse_notice_type(notice_type)
        if not (reason or "").strip():
            raise ValueError("reason is required")

        now = self._now()
        landlord_id = lease.unit.property.landlord_id

        notice = EvictionNotice(
            lease_id=lease.id,
            tenant_id=lease.tenant_id,
            unit_id=lease.unit_id,
            landlord_id=landlord_id,
            notice_type=ntype.value,
            status=EvictionStatus.SERVED.value,
            reason=reason.strip(),
            amount_owed=_money(amount_owed),
            additional_notes=append_note(None, additional_notes, now) if additional_notes else None,
            served_at=now,
            deadline_date=compute_deadline(now, ntype),
            created_at=now,
            updated_at=now,
        )
        self.db.add(notice)
        self.db.flush()

        audit_write(
            self.db,
            landlord_id=landlord_id,
            actor=actor,
            action="eviction_notice.create",
            entity_type="EvictionNotice",
            entity_id=notice.id,
            before=None,
            after=notice.model_dump(),
        )
        self.db.commit()
        self.db.refresh(notice)

        log.info(
            f"eviction notice served ({ntype.value}), deadline {notice.deadline_date.isoformat()}",
            extra={"notice_id": notice.id, "lease_id": lease.id, "landlord_id": landlord_id},
        )
        safe_call(self.hooks.notice_served, notice)
        return notice

    def update_status(
        self,
        notice_id: int,
        new_status: str | EvictionStatus,
        notes: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> EvictionNotice:
        notice = self.get_notice(notice_id, for_update=True)
        current = parse_status(notice.status)

        try:
            requested = parse_status(new_status)
        except ValueError:
            raise InvalidTransitionError(current.value, str(getattr(new_status, "value", new_status)))

        if not can_transition(current, requested):
            raise InvalidTransitionError(current.value, requested.value)

        now = self._now()
        before = notice.model_dump()

        values: dict = {"status": requested.value, "updated_at": now}
        if notes and notes.strip():
            values["additional_notes"] = append_note(notice.additional_notes, notes, now)
        ts_field = timestamp_field_for(requested)
        if ts_field is not None:
            values[ts_field] = now

        # Conditional write: a concurrent change between read and write matches zero rows.
        res = self.db.execute(
            update(EvictionNotice)
            .where(EvictionNotice.id == notice.id, EvictionNotice.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            self.db.rollback()
            latest = self.get_notice(notice_id)
            raise InvalidTransitionError(latest.status, requested.value)

        self.db.refresh(notice)
        audit_write(
            self.db,
            landlord_id=notice.landlord_id,
            actor=actor,
            action="eviction_notice.status",
            entity_type="EvictionNotice",
            entity_id=notice.id,
            before=before,
            after=notice.model_dump(),
        )
        self.db.commit()

        log.info(
            f"eviction notice {current.value} -> {requested.value}",
            extra={"notice_id": notice.id, "lease_id": notice.lease_id, "landlord_id": notice.landlord_id},
        )
        return notice

    def complete_eviction(self, notice_id: int, *, actor: Optional[str] = None) -> EvictionNotice:
        notice = self.update_status(notice_id, EvictionStatus.COMPLETED, actor=actor)
        safe_call(self.hooks.eviction_completed, notice)
        return notice

    def get_expired_notices(self, now: Optional[datetime] = None) -> list[EvictionNotice]:
        now = now or self._now()
        q = (
            select(EvictionNotice)
            .where(
                EvictionNotice.status.in_([s.value for s in OPEN_STATUSES]),
                EvictionNotice.deadline_date < now,
            )
            .order_by(EvictionNotice.deadline_date.asc(), EvictionNotice.id.asc())
        )
        return list(self.db.scalars(q).all())

    def process_expired_notices(self) -> int:
        """
        Daily sweep: move every open notice past its deadline to EXPIRED.

        Each notice commits on its own. A failure is rolled back, logged and
        skipped; earlier successes stay. Returns the number transitioned.
        """
        now = self._now()
        candidates = [(n.id, n.deadline_date) for n in self.get_expired_notices(now)]

        processed = 0
        for notice_id, deadline in candidates:
            note = f"Automatically marked as expired - deadline passed on {deadline.date().isoformat()}"
            try:
                self.update_status(notice_id, EvictionStatus.EXPIRED, notes=note, actor=SYSTEM_ACTOR)
                processed += 1
            except Exception:
                self.db.rollback()
                log.exception("failed to expire eviction notice", extra={"notice_id": notice_id})

        log.info(f"expired eviction sweep processed {processed}/{len(candidates)} notices")
        return processed
