# propflow/domain/invoicing.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

CENTS = Decimal("0.01")


def _dec(v: Any) -> Decimal:
    if v is None:
        return Decimal("0")
    return v if isinstance(v, Decimal) else Decimal(str(v))


def _q(v: Decimal) -> Decimal:
    return v.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return _q(self.quantity * self.unit_price)

    def to_dict(self) -> dict[str, str]:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_due: Decimal


def coerce_line_item(raw: Any) -> LineItem:
    if isinstance(raw, LineItem):
        return raw
    get = raw.get if isinstance(raw, dict) else (lambda k, d=None: getattr(raw, k, d))
    qty = _dec(get("quantity", 1))
    price = _dec(get("unit_price"))
    if qty <= 0:
        raise ValueError("line item quantity must be positive")
    if price < 0:
        raise ValueError("line item unit_price cannot be negative")
    return LineItem(description=str(get("description", "") or ""), quantity=qty, unit_price=price)


def calculate_totals(line_items: Iterable[Any], tax_rate: Any = 0, deposit_paid: Any = 0) -> InvoiceTotals:
    """
    subtotal   = sum(quantity * unit_price)
    tax_amount = subtotal * tax_rate / 100
    total      = subtotal + tax_amount
    amount_due = total - deposit_paid
    """
    items = [coerce_line_item(li) for li in line_items]
    subtotal = sum((li.quantity * li.unit_price for li in items), Decimal("0"))
    tax_amount = subtotal * _dec(tax_rate) / Decimal("100")
    total = _q(subtotal) + _q(tax_amount)
    return InvoiceTotals(
        subtotal=_q(subtotal),
        tax_amount=_q(tax_amount),
        total=total,
        amount_due=_q(total - _dec(deposit_paid)),
    )


def format_invoice_number(day: date, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("invoice sequence starts at 1")
    return f"INV-{day.strftime('%Y%m%d')}-{sequence:05d}"


def money(v: Any) -> Decimal:
    return _q(_dec(v))


def payment_status(amount_paid: Any, amount_due: Any, current: str) -> str:
    """Status after a payment: paid once nothing is due, partial once anything was paid."""
    if _dec(amount_due) <= 0:
        return "paid"
    if _dec(amount_paid) > 0:
        return "partial"
    return current
