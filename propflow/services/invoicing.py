# propflow/services/invoicing.py
from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.invoicing import calculate_totals, coerce_line_item, format_invoice_number, money, payment_status
from ..errors import InvalidStateError, NotFoundError
from ..models import Contractor, ContractorInvoice, ContractorInvoicePayment, ContractorJob

log = logging.getLogger("propflow.invoicing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_invoice_number(db: Session, now: datetime) -> str:
    """Sequence is the count of invoices created on the same UTC day, plus one."""
    start = datetime.combine(now.date(), time.min)
    end = start + timedelta(days=1)
    count = db.scalar(
        select(func.count(ContractorInvoice.id)).where(
            ContractorInvoice.created_at >= start,
            ContractorInvoice.created_at < end,
        )
    )
    return format_invoice_number(now.date(), int(count or 0) + 1)


def create_invoice(
    db: Session,
    *,
    contractor_id: int,
    customer_name: str,
    line_items: Iterable[Any],
    due_date: date,
    job_id: Optional[int] = None,
    tax_rate: Any = 0,
    deposit_paid: Any = 0,
    notes: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ContractorInvoice:
    if db.get(Contractor, int(contractor_id)) is None:
        raise NotFoundError("Contractor", contractor_id)
    if job_id is not None and db.get(ContractorJob, int(job_id)) is None:
        raise NotFoundError("ContractorJob", job_id)

    items = [coerce_line_item(li) for li in line_items]
    if not items:
        raise ValueError("an invoice needs at least one line item")

    totals = calculate_totals(items, tax_rate, deposit_paid)
    now = (clock or _utcnow)()

    inv = ContractorInvoice(
        invoice_number=next_invoice_number(db, now),
        contractor_id=int(contractor_id),
        job_id=job_id,
        customer_name=customer_name,
        line_items_json=json.dumps([li.to_dict() for li in items]),
        subtotal=totals.subtotal,
        tax_rate=tax_rate or 0,
        tax_amount=totals.tax_amount,
        total=totals.total,
        deposit_paid=deposit_paid or 0,
        amount_paid=0,
        amount_due=totals.amount_due,
        status="draft",
        due_date=due_date,
        notes=notes,
        created_at=now,
    )
    db.add(inv)
    db.commit()
    db.refresh(inv)

    log.info(f"invoice {inv.invoice_number} created, total {inv.total}")
    return inv


def record_payment(
    db: Session,
    invoice_id: int,
    amount: Any,
    method: str,
    *,
    stripe_payment_id: Optional[str] = None,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ContractorInvoice:
    """
    Record money received against an invoice.

    The payment row and the invoice's new amount_paid / amount_due / status
    land in one commit. The invoice row is locked while it is recomputed, so
    two payments recorded at once both count.
    """
    inv = db.scalar(
        select(ContractorInvoice)
        .where(ContractorInvoice.id == int(invoice_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if inv is None:
        raise NotFoundError("ContractorInvoice", invoice_id)
    if inv.status == "paid":
        raise InvalidStateError(
            "Invoice is already paid",
            details={"invoice_id": inv.id, "invoice_number": inv.invoice_number},
        )

    amt = money(amount)
    if amt <= 0:
        raise ValueError("payment amount must be positive")
    if amt > inv.amount_due:
        raise ValueError(f"payment {amt} exceeds amount due {inv.amount_due}")

    before = {"status": inv.status, "amount_paid": inv.amount_paid, "amount_due": inv.amount_due}
    now = (clock or _utcnow)()

    inv.amount_paid = money(inv.amount_paid) + amt
    inv.amount_due = money(inv.amount_due) - amt
    inv.status = payment_status(inv.amount_paid, inv.amount_due, inv.status)
    if inv.status == "paid":
        inv.paid_at = now

    db.add(
        ContractorInvoicePayment(
            invoice_id=inv.id,
            amount=amt,
            method=method,
            stripe_payment_id=stripe_payment_id,
            notes=notes,
            created_at=now,
        )
    )
    audit_write(
        db,
        landlord_id=None,
        actor=actor,
        action="invoice.payment",
        entity_type="ContractorInvoice",
        entity_id=inv.id,
        before=before,
        after={
            "status": inv.status,
            "amount_paid": inv.amount_paid,
            "amount_due": inv.amount_due,
            "method": method,
            "stripe_payment_id": stripe_payment_id,
        },
    )
    db.commit()
    db.refresh(inv)

    log.info(
        f"invoice {inv.invoice_number}: payment {amt} via {method}, now {inv.status}",
        extra={"stripe_id": stripe_payment_id},
    )
    return inv
