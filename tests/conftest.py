from __future__ import annotations

import os
import tempfile
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

os.environ.setdefault("APP_ENV", "test")

from propflow.db import Base, SessionLocal, init_db, use_database  # noqa: E402
from propflow.models import (  # noqa: E402
    Contractor,
    ContractorJob,
    JobEscrow,
    JobMilestone,
    Landlord,
    Lease,
    Property,
    Tenant,
    Unit,
)

_TMP = tempfile.mkdtemp(prefix="propflow-tests-")
engine = use_database(f"sqlite:///{os.path.join(_TMP, 'test.db')}")
init_db(engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingHooks:
    def __init__(self):
        self.calls: list[tuple] = []
        self.reminder_messages: list = []

    def notice_served(self, notice):
        self.calls.append(("notice_served", notice.id))

    def eviction_completed(self, notice):
        self.calls.append(("eviction_completed", notice.id))

    def late_fee_applied(self, payment):
        self.calls.append(("late_fee_applied", payment.id))

    def rent_reminder_due(self, payment, days_before, message=None):
        self.calls.append(("rent_reminder_due", payment.id, days_before))
        self.reminder_messages.append(message)


class FakeProcessor:
    """In-memory stand-in for StripeProcessor; records every call."""

    def __init__(self, intent_status: str = "requires_capture"):
        self.calls: list[tuple] = []
        self.intent_status = intent_status
        self.fail_on: dict[str, Exception] = {}
        self._n = 0

    def _next(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}_{self._n}"

    def _record(self, op: str, **kw):
        self.calls.append((op, kw))
        if op in self.fail_on:
            raise self.fail_on[op]

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def call(self, op: str) -> dict:
        return next(kw for name, kw in self.calls if name == op)

    def create_payment_intent(self, amount, *, customer_id, metadata=None, description=None, manual_capture=True, idempotency_key=None):
        self._record("create_payment_intent", amount=amount, customer_id=customer_id, metadata=metadata, idempotency_key=idempotency_key)
        return SimpleNamespace(id=self._next("pi"), status="requires_capture")

    def capture_payment_intent(self, payment_intent_id, amount=None, *, idempotency_key=None):
        self._record("capture_payment_intent", payment_intent_id=payment_intent_id, amount=amount, idempotency_key=idempotency_key)
        return SimpleNamespace(id=payment_intent_id, status="succeeded")

    def cancel_payment_intent(self, payment_intent_id, *, idempotency_key=None):
        self._record("cancel_payment_intent", payment_intent_id=payment_intent_id, idempotency_key=idempotency_key)
        return SimpleNamespace(id=payment_intent_id, status="canceled")

    def retrieve_payment_intent(self, payment_intent_id):
        self._record("retrieve_payment_intent", payment_intent_id=payment_intent_id)
        return SimpleNamespace(id=payment_intent_id, status=self.intent_status)

    def charge(self, amount, *, customer_id, payment_method_id, description, metadata=None, idempotency_key=None):
        self._record("charge", amount=amount, customer_id=customer_id, payment_method_id=payment_method_id, description=description, idempotency_key=idempotency_key)
        return SimpleNamespace(id=self._next("pi_fee"), status="succeeded")

    def create_transfer(self, amount, *, destination, metadata=None, idempotency_key=None):
        self._record("create_transfer", amount=amount, destination=destination, metadata=metadata, idempotency_key=idempotency_key)
        return SimpleNamespace(id=self._next("tr"))

    def create_refund(self, payment_intent_id, amount=None, reason=None, *, idempotency_key=None):
        self._record("create_refund", payment_intent_id=payment_intent_id, amount=amount, reason=reason, idempotency_key=idempotency_key)
        return SimpleNamespace(id=self._next("re"), status="succeeded")


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def hooks():
    return RecordingHooks()


def mk_lease(db, *, status: str = "active", slug: str = "acme", rent: str = "1200.00") -> Lease:
    landlord = Landlord(slug=slug, name="Acme Rentals", email="ops@acme.test")
    db.add(landlord)
    db.flush()
    prop = Property(landlord_id=landlord.id, name="Elm", address="12 Elm St", city="Detroit", state="MI", zip="48201")
    db.add(prop)
    db.flush()
    unit = Unit(property_id=prop.id, name="1A")
    tenant = Tenant(landlord_id=landlord.id, full_name="Jo Tenant", email="jo@tenant.test")
    db.add_all([unit, tenant])
    db.flush()
    lease = Lease(
        unit_id=unit.id,
        tenant_id=tenant.id,
        status=status,
        start_date=date(2023, 6, 1),
        monthly_rent=Decimal(rent),
        rent_due_day=1,
    )
    db.add(lease)
    db.commit()
    db.refresh(lease)
    return lease


def mk_escrow(db, amounts=("500.00",), *, job_title: str = "Roof repair") -> JobEscrow:
    contractor = Contractor(business_name="Top Roofing", email="pro@roof.test", stripe_account_id="acct_123")
    db.add(contractor)
    db.flush()
    job = ContractorJob(contractor_id=contractor.id, title=job_title, agreed_price=sum(Decimal(a) for a in amounts))
    db.add(job)
    db.flush()
    escrow = JobEscrow(
        contractor_job_id=job.id,
        total_amount=sum(Decimal(a) for a in amounts),
        stripe_payment_intent_id="pi_hold",
        status="active",
    )
    for i, a in enumerate(amounts):
        escrow.milestones.append(JobMilestone(title=f"Stage {i + 1}", amount=Decimal(a), sort_order=i))
    db.add(escrow)
    db.commit()
    db.refresh(escrow)
    return escrow
