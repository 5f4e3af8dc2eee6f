# propflow/clients/stripe_processor.py
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import stripe

from ..config import settings
from ..errors import ExternalServiceError

log = logging.getLogger("propflow.stripe")


def to_cents(amount) -> int:
    """Dollar amount -> integer minor units, rounding half up."""
    d = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_retryable(e: stripe.StripeError) -> bool:
    if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError)):
        return True
    status = getattr(e, "http_status", None)
    return bool(status and int(status) >= 500)


def translate_error(operation: str, e: stripe.StripeError) -> ExternalServiceError:
    err = getattr(e, "error", None)
    decline_code = getattr(err, "decline_code", None) if err is not None else None
    if decline_code is None:
        decline_code = getattr(e, "decline_code", None)

    return ExternalServiceError(
        operation,
        getattr(e, "user_message", None) or str(e) or e.__class__.__name__,
        service="stripe",
        error_type=e.__class__.__name__,
        error_code=getattr(e, "code", None),
        decline_code=decline_code,
        http_status=getattr(e, "http_status", None),
        request_id=getattr(e, "request_id", None),
        retryable=_is_retryable(e),
    )


class StripeProcessor:
    """
    Thin client over the Stripe SDK.

    Every call passes the API key and version explicitly (no module-global
    state) and accepts an optional idempotency key. Stripe failures are
    re-raised as ExternalServiceError with the original code preserved.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        api_version: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.api_version = api_version or settings.stripe_api_version
        self.currency = (currency or settings.currency).lower()

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _opts(self, idempotency_key: Optional[str] = None) -> dict[str, Any]:
        opts: dict[str, Any] = {"api_key": self.api_key, "stripe_version": self.api_version}
        if idempotency_key:
            opts["idempotency_key"] = idempotency_key
        return opts

    def _call(self, operation: str, fn, *args, **kwargs):
        if not self.api_key:
            raise ExternalServiceError(operation, "stripe_secret_key not set", error_type="ConfigurationError")
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as e:
            wrapped = translate_error(operation, e)
            log.warning(
                f"stripe {operation} failed: {wrapped.error_type} code={wrapped.error_code} "
                f"retryable={wrapped.retryable}",
                extra={"error_code": wrapped.error_code, "stripe_id": wrapped.request_id},
            )
            raise wrapped from e

    # ------------------------------------------------------------------
    # payment intents
    # ------------------------------------------------------------------
    def create_payment_intent(
        self,
        amount,
        *,
        customer_id: str,
        metadata: Optional[dict[str, str]] = None,
        description: Optional[str] = None,
        manual_capture: bool = True,
        idempotency_key: Optional[str] = None,
    ):
        params: dict[str, Any] = {
            "amount": to_cents(amount),
            "currency": self.currency,
            "customer": customer_id,
            "capture_method": "manual" if manual_capture else "automatic",
            "metadata": dict(metadata or {}),
        }
        if description:
            params["description"] = description
        return self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            **params,
            **self._opts(idempotency_key),
        )

    def capture_payment_intent(self, payment_intent_id: str, amount=None, *, idempotency_key: Optional[str] = None):
        params: dict[str, Any] = {}
        if amount is not None:
            params["amount_to_capture"] = to_cents(amount)
        return self._call(
            "capture_payment_intent",
            stripe.PaymentIntent.capture,
            payment_intent_id,
            **params,
            **self._opts(idempotency_key),
        )

    def cancel_payment_intent(self, payment_intent_id: str, *, idempotency_key: Optional[str] = None):
        return self._call(
            "cancel_payment_intent",
            stripe.PaymentIntent.cancel,
            payment_intent_id,
            **self._opts(idempotency_key),
        )

    def retrieve_payment_intent(self, payment_intent_id: str):
        return self._call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, payment_intent_id, **self._opts())

    def charge(
        self,
        amount,
        *,
        customer_id: str,
        payment_method_id: str,
        description: str,
        metadata: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ):
        """Create and confirm a payment intent in one call (off-session charge)."""
        return self._call(
            "charge",
            stripe.PaymentIntent.create,
            amount=to_cents(amount),
            currency=self.currency,
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            off_session=True,
            description=description,
            metadata=dict(metadata or {}),
            **self._opts(idempotency_key),
        )

    # ------------------------------------------------------------------
    # transfers / refunds
    # ------------------------------------------------------------------
    def create_transfer(
        self,
        amount,
        *,
        destination: str,
        metadata: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ):
        return self._call(
            "create_transfer",
            stripe.Transfer.create,
            amount=to_cents(amount),
            currency=self.currency,
            destination=destination,
            metadata=dict(metadata or {}),
            **self._opts(idempotency_key),
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount=None,
        reason: Optional[str] = None,
        *,
        idempotency_key: Optional[str] = None,
    ):
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = to_cents(amount)
        if reason:
            params["reason"] = reason
        return self._call("create_refund", stripe.Refund.create, **params, **self._opts(idempotency_key))

    def retrieve_transfer(self, transfer_id: str):
        return self._call("retrieve_transfer", stripe.Transfer.retrieve, transfer_id, **self._opts())

    # ------------------------------------------------------------------
    # accounts
    # ------------------------------------------------------------------
    def retrieve_account(self, account_id: str):
        return self._call("retrieve_account", stripe.Account.retrieve, account_id, **self._opts())

    def retrieve_balance(self):
        return self._call("retrieve_balance", stripe.Balance.retrieve, **self._opts())
