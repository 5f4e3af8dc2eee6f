from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import FakeClock, mk_lease
from propflow.domain.audit import audit_trail
from propflow.errors import InvalidStateError, InvalidTransitionError, NotFoundError
from propflow.models import EvictionNotice
from propflow.services.eviction_service import EvictionService


def _svc(db, hooks=None, now=datetime(2024, 1, 1, 10, 0)):
    clock = FakeClock(now)
    return EvictionService(db, hooks=hooks, clock=clock), clock


def test_create_notice_sets_served_and_deadline(db, hooks):
    lease = mk_lease(db)
    svc, _ = _svc(db, hooks)

    n = svc.create_notice(lease.id, "7-day", "Unpaid rent", amount_owed="1200", additional_notes="posted on door")

    assert n.status == "served"
    assert n.served_at == datetime(2024, 1, 1, 10, 0)
    assert n.deadline_date == datetime(2024, 1, 8, 10, 0)
    assert n.amount_owed == Decimal("1200.00")
    assert n.tenant_id == lease.tenant_id
    assert n.unit_id == lease.unit_id
    assert n.additional_notes == "[2024-01-01T10:00:00] posted on door"
    assert ("notice_served", n.id) in hooks.calls

    trail = audit_trail(db, entity_type="EvictionNotice", entity_id=n.id)
    assert [a.action for a in trail] == ["eviction_notice.create"]


@pytest.mark.parametrize("lease_status", ["terminated", "ended"])
def test_create_notice_blocked_on_closed_lease(db, lease_status):
    lease = mk_lease(db, status=lease_status)
    svc, _ = _svc(db)
    with pytest.raises(InvalidStateError):
        svc.create_notice(lease.id, "3-day", "Unpaid rent")
    assert db.query(EvictionNotice).count() == 0


def test_create_notice_missing_lease(db):
    svc, _ = _svc(db)
    with pytest.raises(NotFoundError):
        svc.create_notice(999, "3-day", "Unpaid rent")


def test_hook_failure_does_not_undo_notice(db):
    class Boom:
        def notice_served(self, notice):
            raise RuntimeError("smtp down")

    lease = mk_lease(db)
    svc, _ = _svc(db, Boom())
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    assert db.get(EvictionNotice, n.id).status == "served"


def test_served_to_completed_is_rejected(db):
    lease = mk_lease(db)
    svc, _ = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")

    with pytest.raises(InvalidTransitionError) as ei:
        svc.update_status(n.id, "completed")
    assert "served" in str(ei.value) and "completed" in str(ei.value)
    assert db.get(EvictionNotice, n.id).status == "served"


def test_unknown_status_is_an_invalid_transition(db):
    lease = mk_lease(db)
    svc, _ = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    with pytest.raises(InvalidTransitionError):
        svc.update_status(n.id, "evicted")


def test_update_missing_notice(db):
    svc, _ = _svc(db)
    with pytest.raises(NotFoundError):
        svc.update_status(42, "cured")


def test_cured_sets_only_cured_at(db):
    lease = mk_lease(db)
    svc, clock = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")

    clock.now = datetime(2024, 1, 2, 15, 0)
    n = svc.update_status(n.id, "cured", notes="paid in full")

    assert n.status == "cured"
    assert n.cured_at == datetime(2024, 1, 2, 15, 0)
    assert n.filed_at is None and n.completed_at is None
    assert n.additional_notes.endswith("[2024-01-02T15:00:00] paid in full")


def test_full_path_to_completed(db, hooks):
    lease = mk_lease(db)
    svc, clock = _svc(db, hooks)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")

    clock.now = datetime(2024, 1, 5)
    svc.update_status(n.id, "expired")
    clock.now = datetime(2024, 1, 6)
    n = svc.update_status(n.id, "filed_with_court")
    assert n.filed_at == datetime(2024, 1, 6)
    assert n.completed_at is None

    clock.now = datetime(2024, 2, 1)
    n = svc.complete_eviction(n.id, actor="manager@acme.test")
    assert n.status == "completed"
    assert n.completed_at == datetime(2024, 2, 1)
    assert n.filed_at == datetime(2024, 1, 6)
    assert n.cured_at is None
    assert ("eviction_completed", n.id) in hooks.calls

    trail = audit_trail(db, entity_type="EvictionNotice", entity_id=n.id)
    assert [a.action for a in trail] == [
        "eviction_notice.create",
        "eviction_notice.status",
        "eviction_notice.status",
        "eviction_notice.status",
    ]
    last = trail[-1]
    assert last.actor == "manager@acme.test"
    assert json.loads(last.before_json)["status"] == "filed_with_court"
    assert json.loads(last.after_json)["status"] == "completed"


def test_filed_with_court_requires_expired(db):
    lease = mk_lease(db)
    svc, _ = _svc(db)
    n = svc.create_notice(lease.id, "30-day", "Lease violation")
    with pytest.raises(InvalidTransitionError):
        svc.update_status(n.id, "filed_with_court")


def test_sweep_expires_past_deadline_only(db):
    lease = mk_lease(db)
    svc, clock = _svc(db, now=datetime(2024, 1, 1, 9, 0))
    three = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    thirty = svc.create_notice(lease.id, "30-day", "Unpaid rent")
    assert three.deadline_date == datetime(2024, 1, 4, 9, 0)

    clock.now = datetime(2024, 1, 5, 6, 0)
    assert [n.id for n in svc.get_expired_notices()] == [three.id]

    assert svc.process_expired_notices() == 1

    db.expire_all()
    swept = db.get(EvictionNotice, three.id)
    assert swept.status == "expired"
    assert "Automatically marked as expired - deadline passed on 2024-01-04" in swept.additional_notes
    assert db.get(EvictionNotice, thirty.id).status == "served"

    trail = audit_trail(db, entity_type="EvictionNotice", entity_id=three.id)
    assert trail[-1].actor == "system"


def test_sweep_ignores_cured_notices(db):
    lease = mk_lease(db)
    svc, clock = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    svc.update_status(n.id, "cured")

    clock.now = datetime(2024, 2, 1)
    assert svc.process_expired_notices() == 0
    assert db.get(EvictionNotice, n.id).status == "cured"


def test_sweep_includes_cure_period(db):
    lease = mk_lease(db)
    svc, clock = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    svc.update_status(n.id, "cure_period")

    clock.now = datetime(2024, 1, 10)
    assert svc.process_expired_notices() == 1
    db.expire_all()
    assert db.get(EvictionNotice, n.id).status == "expired"


def test_sweep_isolates_failures(db, monkeypatch):
    lease = mk_lease(db)
    svc, clock = _svc(db)
    a = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    b = svc.create_notice(lease.id, "3-day", "Unpaid rent")
    c = svc.create_notice(lease.id, "3-day", "Unpaid rent")

    real = svc.update_status

    def flaky(notice_id, *args, **kwargs):
        if notice_id == b.id:
            raise RuntimeError("row locked")
        return real(notice_id, *args, **kwargs)

    monkeypatch.setattr(svc, "update_status", flaky)
    clock.now = datetime(2024, 1, 6)

    assert svc.process_expired_notices() == 2

    db.expire_all()
    assert db.get(EvictionNotice, a.id).status == "expired"
    assert db.get(EvictionNotice, b.id).status == "served"
    assert db.get(EvictionNotice, c.id).status == "expired"


def test_stale_status_surfaces_as_invalid_transition(db):
    lease = mk_lease(db)
    svc, _ = _svc(db)
    n = svc.create_notice(lease.id, "3-day", "Unpaid rent")

    # another writer cures the notice behind this session's back
    from propflow.db import SessionLocal

    other = SessionLocal()
    try:
        EvictionService(other).update_status(n.id, "cured")
    finally:
        other.close()

    db.expire_all()
    with pytest.raises(InvalidTransitionError) as ei:
        svc.update_status(n.id, "expired")
    assert ei.value.current == "cured"
