# propflow/models.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

Money = Numeric(12, 2)


# -----------------------------
# Tenancy + audit
# -----------------------------
class Landlord(Base):
    __tablename__ = "landlords"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    properties: Mapped[List["Property"]] = relationship(back_populates="landlord", cascade="all, delete-orphan")


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("landlords.id"), index=True, nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)  # user email | "system"

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Properties / units / leases
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("landlords.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(160), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    landlord: Mapped["Landlord"] = relationship(back_populates="properties")
    units: Mapped[List["Unit"]] = relationship(back_populates="property", cascade="all, delete-orphan")


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    property: Mapped["Property"] = relationship(back_populates="units")
    leases: Mapped[List["Lease"]] = relationship(back_populates="unit")


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("landlords.id"), nullable=False, index=True)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    leases: Mapped[List["Lease"]] = relationship(back_populates="tenant")


class Lease(Base):
    __tablename__ = "leases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # pending|active|terminated|ended
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    monthly_rent: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    rent_due_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    unit: Mapped["Unit"] = relationship(back_populates="leases")
    tenant: Mapped["Tenant"] = relationship(back_populates="leases")
    eviction_notices: Mapped[List["EvictionNotice"]] = relationship(back_populates="lease")
    rent_payments: Mapped[List["RentPayment"]] = relationship(back_populates="lease")


# -----------------------------
# Eviction notices
# -----------------------------
class EvictionNotice(Base):
    __tablename__ = "eviction_notices"
    __table_args__ = (Index("ix_eviction_notices_status_deadline", "status", "deadline_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("landlords.id"), nullable=False, index=True)

    notice_type: Mapped[str] = mapped_column(String(10), nullable=False)  # 3-day|7-day|30-day
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="served")
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    amount_owed: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    served_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deadline_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cured_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    filed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    lease: Mapped["Lease"] = relationship(back_populates="eviction_notices")
    tenant: Mapped["Tenant"] = relationship()
    unit: Mapped["Unit"] = relationship()
    landlord: Mapped["Landlord"] = relationship()

    def model_dump(self) -> dict:
        return {
            "id": self.id,
            "lease_id": self.lease_id,
            "notice_type": self.notice_type,
            "status": self.status,
            "amount_owed": self.amount_owed,
            "served_at": self.served_at,
            "deadline_date": self.deadline_date,
            "cured_at": self.cured_at,
            "filed_at": self.filed_at,
            "completed_at": self.completed_at,
        }


# -----------------------------
# Contractors / escrow
# -----------------------------
class Contractor(Base):
    __tablename__ = "contractors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    jobs: Mapped[List["ContractorJob"]] = relationship(back_populates="contractor")


class ContractorJob(Base):
    __tablename__ = "contractor_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contractor_id: Mapped[int] = mapped_column(Integer, ForeignKey("contractors.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="scheduled")
    agreed_price: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    contractor: Mapped["Contractor"] = relationship(back_populates="jobs")
    escrow: Mapped[Optional["JobEscrow"]] = relationship(back_populates="contractor_job", uselist=False)


class JobEscrow(Base):
    __tablename__ = "job_escrows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contractor_job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contractor_jobs.id"), nullable=False, unique=True, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|refunded

    funded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    contractor_job: Mapped["ContractorJob"] = relationship(back_populates="escrow")
    milestones: Mapped[List["JobMilestone"]] = relationship(
        back_populates="escrow", cascade="all, delete-orphan", order_by="JobMilestone.sort_order"
    )
    releases: Mapped[List["EscrowRelease"]] = relationship(back_populates="escrow")


class JobMilestone(Base):
    __tablename__ = "job_milestones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    escrow_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("job_escrows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|completed
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    escrow: Mapped["JobEscrow"] = relationship(back_populates="milestones")


class EscrowRelease(Base):
    __tablename__ = "escrow_releases"
    __table_args__ = (UniqueConstraint("milestone_id", name="uq_escrow_releases_milestone"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    escrow_id: Mapped[int] = mapped_column(Integer, ForeignKey("job_escrows.id"), nullable=False, index=True)
    milestone_id: Mapped[int] = mapped_column(Integer, ForeignKey("job_milestones.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    contractor_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    stripe_transfer_id: Mapped[str] = mapped_column(String(80), nullable=False)
    platform_fee_payment_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    release_type: Mapped[str] = mapped_column(String(40), nullable=False, default="milestone_completion")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    escrow: Mapped["JobEscrow"] = relationship(back_populates="releases")
    milestone: Mapped["JobMilestone"] = relationship()


# -----------------------------
# Rent automation
# -----------------------------
class RentPayment(Base):
    __tablename__ = "rent_payments"
    __table_args__ = (Index("ix_rent_payments_status_due", "status", "due_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|overdue|paid

    late_fee: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    late_fee_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    late_fee_last_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    lease: Mapped["Lease"] = relationship(back_populates="rent_payments")


class LateFeeSettings(Base):
    __tablename__ = "late_fee_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("landlords.id"), nullable=False, unique=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # None falls back to settings.default_grace_period_days
    grace_period_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fee_type: Mapped[str] = mapped_column(String(20), nullable=False, default="flat")  # flat|percentage
    fee_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_fee: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    recurring_fee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_interval: Mapped[str] = mapped_column(String(10), nullable=False, default="daily")  # daily|weekly
    notify_tenant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class RentReminderSettings(Base):
    __tablename__ = "rent_reminder_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    landlord_id: Mapped[int] = mapped_column(Integer, ForeignKey("landlords.id"), nullable=False, unique=True)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_days_before: Mapped[str] = mapped_column(String(40), nullable=False, default="7,3,1")
    custom_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    def days_before(self) -> list[int]:
        out: list[int] = []
        for part in (self.reminder_days_before or "").split(","):
            part = part.strip()
            if part.isdigit():
                out.append(int(part))
        return sorted(set(out), reverse=True)


# -----------------------------
# Contractor invoicing
# -----------------------------
class ContractorInvoice(Base):
    __tablename__ = "contractor_invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    contractor_id: Mapped[int] = mapped_column(Integer, ForeignKey("contractors.id"), nullable=False, index=True)
    job_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("contractor_jobs.id"), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)

    line_items_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    deposit_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount_due: Mapped[Decimal] = mapped_column(Money, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    payments: Mapped[List["ContractorInvoicePayment"]] = relationship(
        back_populates="invoice", cascade="all, delete-orphan", order_by="ContractorInvoicePayment.id"
    )


class ContractorInvoicePayment(Base):
    __tablename__ = "contractor_invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("contractor_invoices.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    method: Mapped[str] = mapped_column(String(40), nullable=False)  # card|ach|check|cash|other
    stripe_payment_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    invoice: Mapped["ContractorInvoice"] = relationship(back_populates="payments")
