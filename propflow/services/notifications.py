# propflow/services/notifications.py
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..models import EvictionNotice, RentPayment

log = logging.getLogger("propflow.notifications")


class LifecycleHooks:
    """
    Boundary to the collaborators that notify people or start follow-up
    workflows (tenant email/SMS, tenant offboarding).

    The default implementation only logs. Services call these after their
    own writes are committed; a hook failure never rolls back the change.
    """

    def notice_served(self, notice: "EvictionNotice") -> None:
        log.info(
            "eviction notice served",
            extra={"notice_id": notice.id, "lease_id": notice.lease_id, "landlord_id": notice.landlord_id},
        )

    def eviction_completed(self, notice: "EvictionNotice") -> None:
        # offboarding (terminate lease, departure record, turnover checklist) is owned downstream
        log.info(
            "eviction completed; offboarding handed off",
            extra={"notice_id": notice.id, "lease_id": notice.lease_id, "landlord_id": notice.landlord_id},
        )

    def late_fee_applied(self, payment: "RentPayment") -> None:
        log.info("late fee applied", extra={"payment_id": payment.id, "lease_id": payment.lease_id})

    def rent_reminder_due(self, payment: "RentPayment", days_before: int, message: Optional[str] = None) -> None:
        # message is the landlord's custom reminder text, None for the stock wording
        log.info(
            f"rent reminder due ({days_before} days before){', custom message' if message else ''}",
            extra={"payment_id": payment.id, "lease_id": payment.lease_id},
        )


def safe_call(hook, *args) -> bool:
    """Run a hook; log and swallow its failure so the caller's committed work stands."""
    try:
        hook(*args)
        return True
    except Exception:
        log.exception("lifecycle hook %s failed", getattr(hook, "__name__", repr(hook)))
        return False
