"""Stripe adapter for booking payment stages."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)

AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True, "allow_redirects": "never"}
SUCCEEDED_STATUSES = {"succeeded", "requires_capture"}


class StripeConfigurationError(Exception):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(Exception):
    """Temporary Stripe/API issue; the outcome of the call is unknown."""


class StripePaymentError(Exception):
    """Permanent payment failure for a booking charge."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("Stripe secret key not configured.")
    return api_key


def to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (Decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / Decimal("100")).quantize(Decimal("0.01"))


def _handle_stripe_error(exc: stripe.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(exc, stripe.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message) from exc
    if isinstance(
        exc,
        (
            stripe.RateLimitError,
            stripe.APIConnectionError,
            stripe.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise StripeConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.") from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.") from exc


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK.

    Every mutating call carries an idempotency key, which is also stored in the
    object metadata so an unknown outcome can be looked up later.
    """

    def __init__(self, currency: str | None = None):
        self.currency = currency or getattr(settings, "BOOKING_CURRENCY", "cad")

    def _configure(self) -> None:
        stripe.api_key = _get_stripe_api_key()

    def _metadata(self, idempotency_key: str, metadata: dict[str, Any] | None) -> dict[str, str]:
        env_label = getattr(settings, "STRIPE_ENV", "dev") or "dev"
        merged = {str(k): str(v) for k, v in (metadata or {}).items()}
        merged.update({"idempotency_key": idempotency_key, "env": env_label})
        return merged

    def _create_intent(
        self,
        *,
        amount: Decimal,
        idempotency_key: str,
        customer_id: str,
        payment_method_id: str,
        metadata: dict[str, Any] | None,
        off_session: bool,
    ):
        if not payment_method_id:
            raise StripePaymentError("A payment method is required.")
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            raise StripePaymentError("Charge amount must be greater than zero.")
        self._configure()
        try:
            return stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.currency,
                automatic_payment_methods={**AUTOMATIC_PAYMENT_METHODS_CONFIG},
                customer=customer_id or None,
                payment_method=payment_method_id,
                confirm=True,
                off_session=off_session,
                capture_method="automatic",
                metadata=self._metadata(idempotency_key, metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

    def authorize(
        self,
        *,
        amount: Decimal,
        idempotency_key: str,
        customer_id: str = "",
        payment_method_id: str = "",
        metadata: dict[str, Any] | None = None,
    ):
        """Charge the upfront stage while the renter is on-session."""
        return self._create_intent(
            amount=amount,
            idempotency_key=idempotency_key,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            metadata=metadata,
            off_session=False,
        )

    def charge(
        self,
        *,
        amount: Decimal,
        idempotency_key: str,
        customer_id: str = "",
        payment_method_id: str = "",
        metadata: dict[str, Any] | None = None,
    ):
        """Charge the rental stage off-session with the renter's saved card."""
        if not customer_id:
            raise StripePaymentError("A saved Stripe customer is required for off-session charges.")
        return self._create_intent(
            amount=amount,
            idempotency_key=idempotency_key,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            metadata=metadata,
            off_session=True,
        )

    def refund(
        self,
        *,
        payment_id: str,
        amount: Decimal,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ):
        self._configure()
        try:
            return stripe.Refund.create(
                payment_intent=payment_id,
                amount=to_cents(amount),
                metadata=self._metadata(idempotency_key, metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

    def retrieve(self, payment_id: str):
        self._configure()
        try:
            return stripe.PaymentIntent.retrieve(payment_id)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

    def find_by_idempotency_key(self, idempotency_key: str):
        """
        Return the PaymentIntent created under ``idempotency_key``, or None.

        Refund keys are looked up through the refunds of the referenced intent
        by the coordinator, so this only searches PaymentIntents.
        """
        self._configure()
        query = f"metadata['idempotency_key']:'{idempotency_key}'"
        try:
            result = stripe.PaymentIntent.search(query=query, limit=1)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        data = getattr(result, "data", None) or []
        return data[0] if data else None

    def find_refund(self, payment_id: str, idempotency_key: str):
        """Return the refund on ``payment_id`` carrying ``idempotency_key``, or None."""
        self._configure()
        try:
            refunds = stripe.Refund.list(payment_intent=payment_id, limit=100)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)
        for refund in getattr(refunds, "data", None) or []:
            metadata = getattr(refund, "metadata", None) or {}
            if metadata.get("idempotency_key") == idempotency_key:
                return refund
        return None
