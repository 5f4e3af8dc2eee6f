from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import FakeClock, FakeProcessor, mk_escrow
from propflow.domain.audit import audit_trail
from propflow.errors import ExternalServiceError, InvalidStateError, NotFoundError
from propflow.models import ContractorJob, EscrowRelease, JobEscrow, JobMilestone
from propflow.services.escrow_service import EscrowService, MilestonePlan

NOW = datetime(2024, 3, 1, 12, 0)


def _svc(db, processor, fee="2.00"):
    return EscrowService(db, processor, platform_fee=Decimal(fee), clock=FakeClock(NOW))


def _release(svc, milestone_id):
    return svc.release_milestone_payment(milestone_id, "pi_hold", "acct_123", "cus_1", "pm_1")


def test_release_500_with_2_fee(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    svc = _svc(db, processor)

    result = _release(svc, m.id)

    rel = result.release
    assert (rel.amount, rel.platform_fee, rel.contractor_amount) == (
        Decimal("500.00"),
        Decimal("2.00"),
        Decimal("500.00"),
    )
    assert rel.release_type == "milestone_completion"
    assert rel.status == "completed"
    assert rel.stripe_transfer_id.startswith("tr_")
    assert rel.platform_fee_payment_id.startswith("pi_fee_")

    assert processor.ops() == ["capture_payment_intent", "create_transfer", "charge"]
    assert processor.call("capture_payment_intent")["amount"] == Decimal("500.00")
    assert processor.call("create_transfer")["amount"] == Decimal("500.00")
    assert processor.call("create_transfer")["destination"] == "acct_123"
    fee = processor.call("charge")
    assert fee["amount"] == Decimal("2.00")
    assert fee["customer_id"] == "cus_1"
    assert fee["payment_method_id"] == "pm_1"

    db.expire_all()
    m = db.get(JobMilestone, m.id)
    assert m.status == "completed"
    assert m.released_at == NOW
    assert db.scalars(select(EscrowRelease)).all() == [rel]


def test_release_uses_per_step_idempotency_keys(db, processor):
    escrow = mk_escrow(db, ("250.00",))
    m = escrow.milestones[0]
    _release(_svc(db, processor), m.id)

    keys = [kw["idempotency_key"] for _, kw in processor.calls]
    assert keys == [
        f"milestone-release:{m.id}:capture",
        f"milestone-release:{m.id}:transfer",
        f"milestone-release:{m.id}:fee",
    ]


def test_release_writes_audit_row(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    _release(_svc(db, processor), m.id)

    trail = audit_trail(db, entity_type="JobMilestone", entity_id=m.id)
    assert [a.action for a in trail] == ["escrow.milestone_release"]
    after = json.loads(trail[0].after_json)
    assert after["contractor_amount"] == "500.00"
    assert after["platform_fee"] == "2.00"


def test_second_release_is_refused(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    svc = _svc(db, processor)
    _release(svc, m.id)

    with pytest.raises(InvalidStateError):
        _release(svc, m.id)

    assert processor.ops().count("create_transfer") == 1
    assert len(db.scalars(select(EscrowRelease)).all()) == 1


def test_release_missing_milestone(db, processor):
    with pytest.raises(NotFoundError):
        _release(_svc(db, processor), 12345)
    assert processor.calls == []


def test_release_each_milestone_captures_against_the_funding_hold(db, processor):
    # every release captures the one funding intent with its own amount; see DESIGN.md on capture limits
    escrow = mk_escrow(db, ("300.00", "700.00"))
    first, second = escrow.milestones
    svc = _svc(db, processor)

    _release(svc, first.id)
    db.expire_all()
    assert db.get(JobMilestone, second.id).status == "pending"

    _release(svc, second.id)
    amounts = [kw["amount"] for op, kw in processor.calls if op == "create_transfer"]
    assert amounts == [Decimal("300.00"), Decimal("700.00")]
    captures = [(kw["payment_intent_id"], kw["amount"]) for op, kw in processor.calls if op == "capture_payment_intent"]
    assert captures == [("pi_hold", Decimal("300.00")), ("pi_hold", Decimal("700.00"))]


def test_failed_transfer_leaves_milestone_pending(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    processor.fail_on["create_transfer"] = ExternalServiceError("create_transfer", "insufficient funds", retryable=False)

    with pytest.raises(ExternalServiceError):
        _release(_svc(db, processor), m.id)

    db.rollback()
    db.expire_all()
    assert db.get(JobMilestone, m.id).status == "pending"
    assert db.scalars(select(EscrowRelease)).all() == []
    assert "charge" not in processor.ops()


def test_retry_after_partial_failure_replays_same_keys(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    svc = _svc(db, processor)
    processor.fail_on["charge"] = ExternalServiceError("charge", "card declined", error_code="card_declined")

    with pytest.raises(ExternalServiceError):
        _release(svc, m.id)
    db.rollback()

    del processor.fail_on["charge"]
    _release(svc, m.id)

    transfer_keys = [kw["idempotency_key"] for op, kw in processor.calls if op == "create_transfer"]
    assert transfer_keys == [f"milestone-release:{m.id}:transfer"] * 2


def test_local_write_failure_is_logged_with_processor_ids(db, processor, monkeypatch, caplog):
    escrow = mk_escrow(db, ("500.00",))
    m = escrow.milestones[0]
    svc = _svc(db, processor)

    def broken_commit():
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "commit", broken_commit)

    with caplog.at_level("ERROR", logger="propflow.escrow"):
        with pytest.raises(RuntimeError):
            _release(svc, m.id)

    assert any("transfer=tr_" in r.getMessage() for r in caplog.records)
    monkeypatch.undo()
    db.expire_all()
    assert db.get(JobMilestone, m.id).status == "pending"


def test_default_platform_fee_comes_from_settings(db, processor, monkeypatch):
    from propflow.config import settings

    monkeypatch.setattr(settings, "escrow_platform_fee", Decimal("1.00"))
    svc = EscrowService(db, processor)
    assert svc.platform_fee == Decimal("1.00")


# -------------------- funding --------------------

def test_fund_escrow_creates_hold_for_total(db, processor):
    template = mk_escrow(db, ("1.00",), job_title="other")
    job = ContractorJob(contractor_id=template.contractor_job.contractor_id, title="Kitchen")
    db.add(job)
    db.commit()

    svc = _svc(db, processor)
    escrow = svc.fund_escrow(
        job.id,
        "cus_9",
        [MilestonePlan("Demo", Decimal("400")), MilestonePlan("Install", Decimal("600.50"))],
    )

    assert escrow.total_amount == Decimal("1000.50")
    assert escrow.status == "active"
    assert escrow.funded_at == NOW
    assert escrow.stripe_payment_intent_id.startswith("pi_")
    assert [m.title for m in escrow.milestones] == ["Demo", "Install"]

    call = processor.call("create_payment_intent")
    assert call["amount"] == Decimal("1000.50")
    assert call["customer_id"] == "cus_9"
    assert call["idempotency_key"] == f"escrow-fund:{escrow.id}"


def test_fund_escrow_twice_is_refused(db, processor):
    escrow = mk_escrow(db, ("100.00",))
    with pytest.raises(InvalidStateError):
        _svc(db, processor).fund_escrow(escrow.contractor_job_id, "cus_1", [MilestonePlan("x", Decimal("5"))])


def test_fund_escrow_processor_failure_leaves_nothing(db, processor):
    template = mk_escrow(db, ("1.00",))
    job = ContractorJob(contractor_id=template.contractor_job.contractor_id, title="Deck")
    db.add(job)
    db.commit()
    job_id = job.id

    processor.fail_on["create_payment_intent"] = ExternalServiceError("create_payment_intent", "boom", retryable=True)
    with pytest.raises(ExternalServiceError):
        _svc(db, processor).fund_escrow(job_id, "cus_1", [MilestonePlan("x", Decimal("5"))])

    assert db.scalar(select(JobEscrow).where(JobEscrow.contractor_job_id == job_id)) is None


# -------------------- refund --------------------

def test_refund_uncaptured_hold_cancels(db):
    processor = FakeProcessor(intent_status="requires_capture")
    escrow = mk_escrow(db, ("500.00",))

    _svc(db, processor).refund_escrow(escrow.id, "pi_hold")

    assert processor.ops() == ["retrieve_payment_intent", "cancel_payment_intent"]
    db.expire_all()
    e = db.get(JobEscrow, escrow.id)
    assert e.status == "refunded"
    assert e.refunded_at == NOW


def test_refund_captured_payment_issues_refund(db):
    processor = FakeProcessor(intent_status="succeeded")
    escrow = mk_escrow(db, ("500.00",))

    _svc(db, processor).refund_escrow(escrow.id, "pi_hold", amount="125.00", reason="requested_by_customer")

    call = processor.call("create_refund")
    assert call["amount"] == Decimal("125.00")
    assert call["reason"] == "requested_by_customer"
    assert db.get(JobEscrow, escrow.id).status == "refunded"


def test_refund_other_intent_status_is_refused(db):
    processor = FakeProcessor(intent_status="processing")
    escrow = mk_escrow(db, ("500.00",))

    with pytest.raises(InvalidStateError):
        _svc(db, processor).refund_escrow(escrow.id, "pi_hold")
    assert db.get(JobEscrow, escrow.id).status == "active"


def test_release_after_refund_is_refused(db):
    processor = FakeProcessor(intent_status="requires_capture")
    escrow = mk_escrow(db, ("500.00",))
    svc = _svc(db, processor)
    svc.refund_escrow(escrow.id, "pi_hold")

    with pytest.raises(InvalidStateError):
        _release(svc, escrow.milestones[0].id)


# -------------------- concurrent releases --------------------

def test_release_from_stale_session_is_refused_before_processor(db, processor):
    escrow = mk_escrow(db, ("500.00",))
    m_id = escrow.milestones[0].id

    from propflow.db import SessionLocal

    other = SessionLocal()
    try:
        # the other session already holds the milestone as pending
        assert other.get(JobMilestone, m_id).status == "pending"

        _release(_svc(db, processor), m_id)

        other_processor = FakeProcessor()
        with pytest.raises(InvalidStateError):
            _release(_svc(other, other_processor), m_id)
        assert other_processor.calls == []
    finally:
        other.close()

    assert len(db.scalars(select(EscrowRelease)).all()) == 1


def test_release_losing_commit_race_is_invalid_state(db, processor, caplog):
    escrow = mk_escrow(db, ("500.00",))
    m_id = escrow.milestones[0].id

    # a concurrent release recorded its row but this session still reads the milestone as pending
    db.add(
        EscrowRelease(
            escrow_id=escrow.id,
            milestone_id=m_id,
            amount=Decimal("500.00"),
            platform_fee=Decimal("2.00"),
            contractor_amount=Decimal("500.00"),
            stripe_transfer_id="tr_winner",
        )
    )
    db.commit()

    with caplog.at_level("WARNING", logger="propflow.escrow"):
        with pytest.raises(InvalidStateError):
            _release(_svc(db, processor), m_id)

    assert not [r for r in caplog.records if r.levelname == "ERROR"]
    assert [r.stripe_transfer_id for r in db.scalars(select(EscrowRelease))] == ["tr_winner"]
    assert db.get(JobMilestone, m_id).status == "pending"
