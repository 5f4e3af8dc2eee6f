# propflow/routers/invoices.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas import InvoiceCreate, InvoiceOut, InvoicePaymentIn
from ..services.invoicing import create_invoice, record_payment

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceOut, status_code=201)
def create(payload: InvoiceCreate, db: Session = Depends(get_db)):
    inv = create_invoice(
        db,
        contractor_id=payload.contractor_id,
        customer_name=payload.customer_name,
        job_id=payload.job_id,
        line_items=[li.model_dump() for li in payload.line_items],
        tax_rate=payload.tax_rate,
        deposit_paid=payload.deposit_paid,
        due_date=payload.due_date,
        notes=payload.notes,
    )
    return InvoiceOut.model_validate(inv)


@router.post("/{invoice_id}/payments", response_model=InvoiceOut)
def add_payment(
    invoice_id: int,
    payload: InvoicePaymentIn,
    db: Session = Depends(get_db),
    actor: str | None = Header(default=None, alias="X-Actor"),
):
    inv = record_payment(
        db,
        invoice_id,
        payload.amount,
        payload.method,
        stripe_payment_id=payload.stripe_payment_id,
        notes=payload.notes,
        actor=actor,
    )
    return InvoiceOut.model_validate(inv)
