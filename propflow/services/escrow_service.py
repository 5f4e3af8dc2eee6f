# propflow/services/escrow_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..clients.stripe_processor import StripeProcessor
from ..config import settings
from ..domain.audit import audit_write
from ..errors import InvalidStateError, NotFoundError
from ..models import ContractorJob, EscrowRelease, JobEscrow, JobMilestone

log = logging.getLogger("propflow.escrow")

MILESTONE_PENDING = "pending"
MILESTONE_COMPLETED = "completed"
ESCROW_ACTIVE = "active"
ESCROW_REFUNDED = "refunded"

CENTS = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _money(v) -> Decimal:
    d = v if isinstance(v, Decimal) else Decimal(str(v))
    return d.quantize(CENTS)


def processor_id(obj: Any) -> Optional[str]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get("id")
    return getattr(obj, "id", None)


def _obj_get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


@dataclass(frozen=True)
class MilestonePlan:
    title: str
    amount: Decimal


@dataclass(frozen=True)
class ReleaseResult:
    release: EscrowRelease
    payment_intent: Any
    transfer: Any
    platform_fee_payment: Any
    platform_fee: Decimal
    contractor_amount: Decimal


class EscrowService:
    """
    Moves money for contractor jobs through the payment processor and keeps
    the local escrow rows in step with it.

    Milestone release is three independent processor calls (capture,
    transfer, fee charge) followed by one local transaction. Each call uses
    an idempotency key derived from the milestone id, so retrying a release
    after a partial failure replays completed calls instead of repeating them.
    """

    def __init__(
        self,
        db: Session,
        processor: Optional[StripeProcessor] = None,
        *,
        platform_fee=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.processor = processor or StripeProcessor()
        self.platform_fee = _money(platform_fee if platform_fee is not None else settings.escrow_platform_fee)
        self._now = clock or _utcnow

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def _load_milestone(self, milestone_id: int, *, for_update: bool = False) -> JobMilestone:
        q = (
            select(JobMilestone)
            .options(joinedload(JobMilestone.escrow).joinedload(JobEscrow.contractor_job))
            .where(JobMilestone.id == int(milestone_id))
        )
        if for_update:
            # lock only the milestone row; re-read it even if this session already holds a copy
            q = q.with_for_update(of=JobMilestone).execution_options(populate_existing=True)
        m = self.db.scalar(q)
        if m is None:
            raise NotFoundError("JobMilestone", milestone_id)
        return m

    def get_escrow(self, escrow_id: int, *, for_update: bool = False) -> JobEscrow:
        q = select(JobEscrow).where(JobEscrow.id == int(escrow_id))
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        e = self.db.scalar(q)
        if e is None:
            raise NotFoundError("JobEscrow", escrow_id)
        return e

    # ------------------------------------------------------------------
    # processor pass-throughs
    # ------------------------------------------------------------------
    def create_payment_intent(self, escrow_id: int, amount, customer_id: str, metadata: dict[str, str]):
        return self.processor.create_payment_intent(
            amount,
            customer_id=customer_id,
            metadata={"escrowId": str(escrow_id), **metadata},
            description=f"Escrow funding for job {metadata.get('jobId', '')}".strip(),
            manual_capture=True,
            idempotency_key=f"escrow-fund:{escrow_id}",
        )

    def capture_payment_intent(self, payment_intent_id: str, amount=None, *, idempotency_key: Optional[str] = None):
        return self.processor.capture_payment_intent(payment_intent_id, amount, idempotency_key=idempotency_key)

    def cancel_payment_intent(self, payment_intent_id: str):
        return self.processor.cancel_payment_intent(payment_intent_id)

    def transfer_to_contractor(
        self,
        amount,
        contractor_account_id: str,
        metadata: dict[str, str],
        *,
        idempotency_key: Optional[str] = None,
    ) -> tuple[Any, Decimal]:
        # Contractor receives the full amount; the platform fee is charged to the payer separately.
        contractor_amount = _money(amount)
        transfer = self.processor.create_transfer(
            contractor_amount,
            destination=contractor_account_id,
            metadata={**metadata, "contractorAmount": str(contractor_amount)},
            idempotency_key=idempotency_key,
        )
        return transfer, contractor_amount

    def charge_platform_fee(
        self,
        customer_id: str,
        payment_method_id: str,
        metadata: dict[str, str],
        *,
        idempotency_key: Optional[str] = None,
    ):
        return self.processor.charge(
            self.platform_fee,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            description="Platform service fee",
            metadata={**metadata, "type": "platform_fee", "amount": str(self.platform_fee)},
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # funding
    # ------------------------------------------------------------------
    def fund_escrow(
        self,
        job_id: int,
        customer_stripe_id: str,
        milestones: Iterable[MilestonePlan],
    ) -> JobEscrow:
        job = self.db.scalar(select(ContractorJob).where(ContractorJob.id == int(job_id)))
        if job is None:
            raise NotFoundError("ContractorJob", job_id)

        existing = self.db.scalar(select(JobEscrow).where(JobEscrow.contractor_job_id == job.id))
        if existing is not None:
            raise InvalidStateError(
                "Escrow already exists for this job",
                details={"job_id": job.id, "escrow_id": existing.id, "escrow_status": existing.status},
            )

        plans = list(milestones)
        if not plans:
            raise ValueError("at least one milestone is required")
        for s in plans:
            if _money(s.amount) <= 0:
                raise ValueError(f"milestone {s.title!r} must have a positive amount")

        total = sum((_money(s.amount) for s in plans), Decimal("0.00"))
        escrow = JobEscrow(contractor_job_id=job.id, total_amount=total, status=ESCROW_ACTIVE)
        for i, s in enumerate(plans):
            escrow.milestones.append(JobMilestone(title=s.title, amount=_money(s.amount), sort_order=i))
        self.db.add(escrow)
        self.db.flush()

        try:
            intent = self.create_payment_intent(
                escrow.id,
                total,
                customer_stripe_id,
                {"jobId": str(job.id), "contractorId": str(job.contractor_id)},
            )
        except Exception:
            self.db.rollback()
            raise

        escrow.stripe_payment_intent_id = processor_id(intent)
        escrow.funded_at = self._now()
        audit_write(
            self.db,
            landlord_id=None,
            actor=None,
            action="escrow.fund",
            entity_type="JobEscrow",
            entity_id=escrow.id,
            after={"job_id": job.id, "total_amount": total, "payment_intent_id": escrow.stripe_payment_intent_id},
        )
        self.db.commit()
        self.db.refresh(escrow)

        log.info(f"escrow funded for {total}", extra={"escrow_id": escrow.id, "stripe_id": escrow.stripe_payment_intent_id})
        return escrow

    # ------------------------------------------------------------------
    # release
    # ------------------------------------------------------------------
    def release_milestone_payment(
        self,
        milestone_id: int,
        payment_intent_id: str,
        contractor_account_id: str,
        customer_stripe_id: str,
        payment_method_id: str,
    ) -> ReleaseResult:
        milestone = self._load_milestone(milestone_id, for_update=True)
        if milestone.status == MILESTONE_COMPLETED:
            raise InvalidStateError(
                "Milestone has already been released",
                details={"milestone_id": milestone.id, "released_at": milestone.released_at},
            )
        if milestone.escrow.status != ESCROW_ACTIVE:
            raise InvalidStateError(
                f"Escrow is {milestone.escrow.status}",
                details={"escrow_id": milestone.escrow_id, "escrow_status": milestone.escrow.status},
            )

        amount = _money(milestone.amount)
        escrow_id = milestone.escrow_id
        meta = {
            "milestoneId": str(milestone.id),
            "escrowId": str(escrow_id),
            "jobId": str(milestone.escrow.contractor_job_id),
        }
        key = f"milestone-release:{milestone.id}"

        # 1) capture the held funds for this milestone
        payment_intent = self.capture_payment_intent(payment_intent_id, amount, idempotency_key=f"{key}:capture")

        # 2) contractor receives 100% of the milestone
        transfer, contractor_amount = self.transfer_to_contractor(
            amount, contractor_account_id, meta, idempotency_key=f"{key}:transfer"
        )

        # 3) flat platform fee charged to the payer
        fee_payment = self.charge_platform_fee(
            customer_stripe_id, payment_method_id, meta, idempotency_key=f"{key}:fee"
        )

        # 4) local bookkeeping, one transaction
        now = self._now()
        try:
            release = EscrowRelease(
                escrow_id=escrow_id,
                milestone_id=milestone.id,
                amount=amount,
                platform_fee=self.platform_fee,
                contractor_amount=contractor_amount,
                stripe_transfer_id=processor_id(transfer),
                platform_fee_payment_id=processor_id(fee_payment),
                release_type="milestone_completion",
                status="completed",
                created_at=now,
            )
            self.db.add(release)
            milestone.status = MILESTONE_COMPLETED
            milestone.released_at = now
            audit_write(
                self.db,
                landlord_id=None,
                actor=None,
                action="escrow.milestone_release",
                entity_type="JobMilestone",
                entity_id=milestone.id,
                before={"status": MILESTONE_PENDING},
                after={
                    "status": MILESTONE_COMPLETED,
                    "amount": amount,
                    "platform_fee": self.platform_fee,
                    "contractor_amount": contractor_amount,
                    "transfer_id": release.stripe_transfer_id,
                },
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # a concurrent release of the same milestone committed first; the processor calls
            # above replayed its idempotency keys, so nothing moved twice
            log.warning(
                "milestone release lost a race with a concurrent release",
                extra={"milestone_id": milestone_id, "escrow_id": escrow_id, "error_code": "already_released"},
            )
            raise InvalidStateError(
                "Milestone has already been released",
                details={"milestone_id": milestone_id},
            ) from e
        except Exception:
            self.db.rollback()
            # money has moved at the processor; these ids are what reconciliation needs
            log.error(
                "milestone release recorded at processor but local write failed: "
                f"payment_intent={payment_intent_id} transfer={processor_id(transfer)} fee_payment={processor_id(fee_payment)}",
                exc_info=True,
                extra={"milestone_id": milestone_id, "escrow_id": escrow_id},
            )
            raise

        self.db.refresh(release)
        log.info(
            f"milestone released: amount={amount} fee={self.platform_fee} contractor={contractor_amount}",
            extra={"milestone_id": milestone_id, "escrow_id": escrow_id, "stripe_id": release.stripe_transfer_id},
        )
        return ReleaseResult(
            release=release,
            payment_intent=payment_intent,
            transfer=transfer,
            platform_fee_payment=fee_payment,
            platform_fee=self.platform_fee,
            contractor_amount=contractor_amount,
        )

    # ------------------------------------------------------------------
    # refund
    # ------------------------------------------------------------------
    def refund_escrow(
        self,
        escrow_id: int,
        payment_intent_id: str,
        amount=None,
        reason: Optional[str] = None,
    ):
        escrow = self.get_escrow(escrow_id, for_update=True)
        if escrow.status == ESCROW_REFUNDED:
            raise InvalidStateError("Escrow has already been refunded", details={"escrow_id": escrow.id})

        intent = self.processor.retrieve_payment_intent(payment_intent_id)
        intent_status = _obj_get(intent, "status")

        if intent_status == "requires_capture":
            # not captured yet: releasing the hold is enough
            result = self.processor.cancel_payment_intent(
                payment_intent_id, idempotency_key=f"escrow-refund:{escrow.id}:cancel"
            )
        elif intent_status == "succeeded":
            result = self.processor.create_refund(
                payment_intent_id,
                _money(amount) if amount is not None else None,
                reason,
                idempotency_key=f"escrow-refund:{escrow.id}:refund",
            )
        else:
            raise InvalidStateError(
                f"Cannot refund payment intent with status: {intent_status}",
                details={"escrow_id": escrow.id, "payment_intent_status": intent_status},
            )

        escrow.status = ESCROW_REFUNDED
        escrow.refunded_at = self._now()
        audit_write(
            self.db,
            landlord_id=None,
            actor=None,
            action="escrow.refund",
            entity_type="JobEscrow",
            entity_id=escrow.id,
            before={"status": ESCROW_ACTIVE},
            after={"status": ESCROW_REFUNDED, "processor_result_id": processor_id(result), "intent_status": intent_status},
        )
        self.db.commit()

        log.info(f"escrow refunded (intent was {intent_status})", extra={"escrow_id": escrow.id})
        return result
