# propflow/domain/late_fees.py
from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

CENTS = Decimal("0.01")

FEE_FLAT = "flat"
FEE_PERCENTAGE = "percentage"


def _dec(v: Any) -> Decimal:
    if v is None:
        return Decimal("0")
    return v if isinstance(v, Decimal) else Decimal(str(v))


def compute_late_fee(rent_amount: Any, cfg: Any) -> Decimal:
    """
    Late fee for one rent payment. `cfg` is anything shaped like LateFeeSettings.

    - flat: fee_amount as-is
    - percentage: rent_amount * fee_amount / 100
    - max_fee caps either kind when set

    With recurring fees, max_fee also caps the running total; see capped_increment.
    """
    fee_type = getattr(cfg, "fee_type", None)
    fee_amount = getattr(cfg, "fee_amount", None)
    max_fee = getattr(cfg, "max_fee", None)

    kind = (fee_type or FEE_FLAT).strip().lower()
    if kind == FEE_FLAT:
        fee = _dec(fee_amount)
    elif kind == FEE_PERCENTAGE:
        fee = _dec(rent_amount) * _dec(fee_amount) / Decimal("100")
    else:
        raise ValueError(f"unknown late fee type {fee_type!r}")

    if max_fee is not None and fee > _dec(max_fee):
        fee = _dec(max_fee)
    if fee < 0:
        fee = Decimal("0")
    return fee.quantize(CENTS, rounding=ROUND_HALF_UP)


def is_past_due(due_date: date, today: date) -> bool:
    return today > due_date


def is_past_grace(due_date: date, today: date, grace_period_days: int) -> bool:
    # grace is inclusive: due the 1st with 5 days grace -> fee from the 7th
    return today > due_date + timedelta(days=max(0, int(grace_period_days or 0)))


RECURRING_INTERVAL_DAYS = {"daily": 1, "weekly": 7}


def recurring_fee_due(last_applied: date, today: date, interval: Optional[str]) -> bool:
    step = RECURRING_INTERVAL_DAYS.get((interval or "daily").strip().lower())
    if step is None:
        raise ValueError(f"unknown recurring interval {interval!r}")
    return (today - last_applied).days >= step


def capped_increment(fee: Decimal, already_charged: Any, max_fee: Any) -> Decimal:
    """Part of `fee` that still fits under max_fee once `already_charged` is counted."""
    if max_fee is None:
        return fee
    room = _dec(max_fee) - _dec(already_charged)
    return max(Decimal("0"), min(fee, room)).quantize(CENTS, rounding=ROUND_HALF_UP)


def reminder_due(due_date: date, today: date, days_before: list[int]) -> Optional[int]:
    """Return the matching offset when today is exactly N days before due_date."""
    delta = (due_date - today).days
    if delta in days_before:
        return delta
    return None
