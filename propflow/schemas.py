# propflow/schemas.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .domain.eviction_rules import EvictionStatus, NoticeType


# -------------------- Eviction notices --------------------

class EvictionNoticeCreate(BaseModel):
    lease_id: int
    notice_type: NoticeType
    reason: str = Field(min_length=1)
    amount_owed: Optional[Decimal] = Field(default=None, ge=0)
    additional_notes: Optional[str] = None


class EvictionStatusUpdate(BaseModel):
    # plain str so unknown values reach the state machine and come back as 409
    status: str
    notes: Optional[str] = None


class EvictionNoticeOut(BaseModel):
    id: int
    lease_id: int
    tenant_id: int
    unit_id: int
    landlord_id: int
    notice_type: NoticeType
    status: EvictionStatus
    reason: str
    amount_owed: Optional[Decimal] = None
    additional_notes: Optional[str] = None
    served_at: datetime
    deadline_date: datetime
    cured_at: Optional[datetime] = None
    filed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SweepOut(BaseModel):
    processed: int


# -------------------- Escrow --------------------

class MilestoneIn(BaseModel):
    title: str
    amount: Decimal = Field(gt=0)


class EscrowFundIn(BaseModel):
    job_id: int
    customer_stripe_id: str
    milestones: List[MilestoneIn] = Field(min_length=1)


class JobMilestoneOut(BaseModel):
    id: int
    title: str
    amount: Decimal
    sort_order: int
    status: str
    released_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class JobEscrowOut(BaseModel):
    id: int
    contractor_job_id: int
    total_amount: Decimal
    stripe_payment_intent_id: Optional[str] = None
    status: str
    funded_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    milestones: List[JobMilestoneOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class MilestoneReleaseIn(BaseModel):
    payment_intent_id: str
    contractor_account_id: str
    customer_stripe_id: str
    payment_method_id: str


class EscrowReleaseOut(BaseModel):
    id: int
    escrow_id: int
    milestone_id: int
    amount: Decimal
    platform_fee: Decimal
    contractor_amount: Decimal
    stripe_transfer_id: str
    platform_fee_payment_id: Optional[str] = None
    release_type: str
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EscrowRefundIn(BaseModel):
    payment_intent_id: str
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = None


class EscrowRefundOut(BaseModel):
    escrow_id: int
    status: str
    refunded_at: Optional[datetime] = None
    processor_id: Optional[str] = None


# -------------------- Invoicing --------------------

class LineItemIn(BaseModel):
    description: str
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(ge=0)


class InvoiceCreate(BaseModel):
    contractor_id: int
    customer_name: str
    job_id: Optional[int] = None
    line_items: List[LineItemIn] = Field(min_length=1)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    deposit_paid: Decimal = Field(default=Decimal("0"), ge=0)
    due_date: date
    notes: Optional[str] = None


class InvoicePaymentIn(BaseModel):
    amount: Decimal = Field(gt=0)
    method: str = Field(min_length=1, max_length=40)
    stripe_payment_id: Optional[str] = None
    notes: Optional[str] = None


class InvoiceOut(BaseModel):
    id: int
    invoice_number: str
    contractor_id: int
    job_id: Optional[int] = None
    customer_name: str
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    deposit_paid: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    status: str
    due_date: date
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Rent automation --------------------

class DailyCheckOut(BaseModel):
    marked_overdue: int
    late_fees_applied: int
    reminders_sent: int
    failures: int
