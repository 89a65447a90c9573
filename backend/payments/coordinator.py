"""Two-stage payment coordination for bookings.

The upfront stage (platform fee, delivery and guarantee) is charged when the
renter sends the request; the rental stage (the subtotal) is charged when the
owner confirms. Every Stripe call is keyed on ``booking:{id}:{stage}`` and
recorded in the ledger under the same key, so replays never charge twice.
A declined attempt is recorded too and moves the key to
``booking:{id}:{stage}:{n}`` so the next attempt is not answered with the
stored decline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from bookings.exceptions import InternalError, PaymentDeclined, PaymentFailed
from bookings.models import Booking

from .cancellation_policy import CancellationRefund, compute_cancellation_refund
from .gateway import (
    SUCCEEDED_STATUSES,
    StripeConfigurationError,
    StripeGateway,
    StripePaymentError,
    StripeTransientError,
    from_cents,
    to_cents,
)
from .ledger import declined_attempts, find_transaction, log_transaction, refunded_total
from .models import Transaction

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")
REFUND_OK_STATUSES = {"succeeded", "pending"}


@dataclass(frozen=True)
class RefundRecord:
    stage: str
    amount: Decimal
    refund_id: str


def stage_key(booking_id, stage: str, attempt: int = 0) -> str:
    key = f"booking:{booking_id}:{stage}"
    return f"{key}:{attempt}" if attempt else key


def refund_key(booking_id, payment_id: str, amount: Decimal) -> str:
    return f"booking:{booking_id}:refund:{payment_id}:{to_cents(amount)}"


class PaymentStageCoordinator:
    def __init__(self, gateway: Optional[StripeGateway] = None):
        self.gateway = gateway or StripeGateway()

    def _call_with_recovery(
        self,
        call: Callable[[], object],
        lookup: Callable[[], object],
        *,
        idempotency_key: str,
    ):
        """
        Run ``call``; a transient error is an unknown outcome, so look the
        object up by idempotency key, retry once with the same key and look up
        again before giving up.
        """
        for attempt in (1, 2):
            try:
                return call()
            except StripeTransientError:
                logger.warning(
                    "Stripe outcome unknown for %s (attempt %s); querying provider.",
                    idempotency_key,
                    attempt,
                    exc_info=True,
                )
            except StripePaymentError as exc:
                raise PaymentDeclined(str(exc)) from exc
            except StripeConfigurationError as exc:
                logger.exception("Stripe is misconfigured; cannot process %s.", idempotency_key)
                raise InternalError() from exc

            try:
                found = lookup()
            except (StripeTransientError, StripePaymentError):
                logger.warning("Stripe lookup failed for %s.", idempotency_key, exc_info=True)
                found = None
            if found is not None:
                return found
        raise PaymentFailed("Payment provider did not respond; please retry.")

    def _find_intent(self, idempotency_key: str):
        return lambda: self.gateway.find_by_idempotency_key(idempotency_key)

    @staticmethod
    def _require_succeeded(intent, label: str) -> str:
        status = getattr(intent, "status", "")
        if status not in SUCCEEDED_STATUSES:
            logger.warning("Stripe %s intent %s in unexpected status %s.", label, intent.id, status)
            raise PaymentDeclined(f"The {label} payment was not completed (status: {status}).")
        return intent.id

    @staticmethod
    def _assign(booking: Booking, field: str, payment_id: str) -> None:
        """Payment ids are write-once."""
        current = getattr(booking, field) or ""
        if current and current != payment_id:
            raise PaymentFailed(f"Booking already has a different {field.replace('_', ' ')}.")
        setattr(booking, field, payment_id)

    @staticmethod
    def _customer_id(booking: Booking) -> str:
        return (
            booking.stripe_customer_id or getattr(booking.renter, "stripe_customer_id", "") or ""
        ).strip()

    def _metadata(self, booking: Booking, stage: str) -> dict[str, str]:
        return {
            "booking_id": str(booking.id),
            "listing_id": str(booking.listing_id),
            "stage": stage,
        }

    def attempt_key(self, booking: Booking, stage: str) -> str:
        """Stripe key for the next attempt; each recorded decline moves it on."""
        return stage_key(booking.id, stage, declined_attempts(booking.id, stage))

    def record_decline(
        self, booking: Booking, stage: str, amount: Decimal, *, attach: bool = True
    ) -> Transaction:
        """
        Remember a declined attempt so a retry gets a fresh Stripe idempotency
        key instead of replaying the stored decline.

        Pass ``attach=False`` when the booking row was never committed.
        """
        return log_transaction(
            user=booking.renter,
            booking=booking if attach else None,
            kind=Transaction.Kind.DECLINE,
            stage=stage,
            amount=amount,
            currency=self.gateway.currency,
            idempotency_key=f"{self.attempt_key(booking, stage)}:declined",
        )

    def authorize_upfront(self, booking: Booking, amount: Decimal) -> str:
        """Charge the upfront stage before the booking row is written."""
        if booking.upfront_payment_id:
            return booking.upfront_payment_id
        key = self.attempt_key(booking, Transaction.Stage.UPFRONT)
        intent = self._call_with_recovery(
            lambda: self.gateway.authorize(
                amount=amount,
                idempotency_key=key,
                customer_id=self._customer_id(booking),
                payment_method_id=booking.stripe_payment_method_id,
                metadata=self._metadata(booking, Transaction.Stage.UPFRONT),
            ),
            self._find_intent(key),
            idempotency_key=key,
        )
        payment_id = self._require_succeeded(intent, "upfront")
        self._assign(booking, "upfront_payment_id", payment_id)
        return payment_id

    def link_upfront(self, booking: Booking, payment_intent_id: str, amount: Decimal) -> str:
        """Attach a PaymentIntent the renter already confirmed client-side."""
        try:
            intent = self.gateway.retrieve(payment_intent_id)
        except StripePaymentError as exc:
            raise PaymentFailed("Upfront payment could not be found.") from exc
        except StripeTransientError as exc:
            raise PaymentFailed("Payment provider did not respond; please retry.") from exc
        except StripeConfigurationError as exc:
            logger.exception("Stripe is misconfigured; cannot link %s.", payment_intent_id)
            raise InternalError() from exc

        payment_id = self._require_succeeded(intent, "upfront")
        if int(getattr(intent, "amount", 0) or 0) < to_cents(amount):
            raise PaymentFailed("Upfront payment amount is lower than the amount due.")
        already_used = (
            Booking.objects.filter(upfront_payment_id=payment_id).exclude(pk=booking.pk).exists()
        )
        if already_used:
            raise PaymentFailed("This payment is already linked to another booking.")
        self._assign(booking, "upfront_payment_id", payment_id)
        return payment_id

    def void_upfront(self, booking: Booking, amount: Decimal) -> str:
        """
        Refund an upfront charge whose booking row was never committed.

        No ledger row is written since the booking does not exist.
        """
        if not booking.upfront_payment_id or amount <= _ZERO:
            return ""
        key = refund_key(booking.id, booking.upfront_payment_id, amount)
        refund = self._call_with_recovery(
            lambda: self.gateway.refund(
                payment_id=booking.upfront_payment_id,
                amount=amount,
                idempotency_key=key,
                metadata={**self._metadata(booking, Transaction.Stage.UPFRONT), "reason": "void"},
            ),
            lambda: self.gateway.find_refund(booking.upfront_payment_id, key),
            idempotency_key=key,
        )
        return refund.id

    def record_upfront(self, booking: Booking) -> Transaction:
        """Write the ledger row for an upfront payment once the booking exists."""
        return log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.UPFRONT_CHARGE,
            stage=Transaction.Stage.UPFRONT,
            amount=booking.upfront_amount,
            currency=self.gateway.currency,
            stripe_id=booking.upfront_payment_id,
            idempotency_key=self.attempt_key(booking, Transaction.Stage.UPFRONT),
        )

    def capture_rental(self, booking: Booking, amount: Decimal) -> str:
        """Charge the rental stage exactly once; replays return the stored id."""
        key = self.attempt_key(booking, Transaction.Stage.RENTAL)
        existing = find_transaction(key)
        if existing is not None:
            self._assign(booking, "rental_payment_id", existing.stripe_id or "")
            return existing.stripe_id or ""
        if booking.rental_payment_id:
            return booking.rental_payment_id
        if amount <= _ZERO:
            return ""

        customer_id = self._customer_id(booking)
        intent = self._call_with_recovery(
            lambda: self.gateway.charge(
                amount=amount,
                idempotency_key=key,
                customer_id=customer_id,
                payment_method_id=booking.stripe_payment_method_id,
                metadata=self._metadata(booking, Transaction.Stage.RENTAL),
            ),
            self._find_intent(key),
            idempotency_key=key,
        )
        payment_id = self._require_succeeded(intent, "rental")
        self._assign(booking, "rental_payment_id", payment_id)
        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.RENTAL_CHARGE,
            stage=Transaction.Stage.RENTAL,
            amount=amount,
            currency=self.gateway.currency,
            stripe_id=payment_id,
            idempotency_key=key,
        )
        return payment_id

    def refund(
        self,
        booking: Booking,
        payment_id: str,
        amount: Decimal,
        *,
        stage: str,
        reason: str = "",
    ) -> str:
        if not payment_id or amount <= _ZERO:
            return ""
        key = refund_key(booking.id, payment_id, amount)
        existing = find_transaction(key)
        if existing is not None:
            return existing.stripe_id or ""

        metadata = self._metadata(booking, stage)
        if reason:
            metadata["reason"] = reason[:200]
        refund = self._call_with_recovery(
            lambda: self.gateway.refund(
                payment_id=payment_id,
                amount=amount,
                idempotency_key=key,
                metadata=metadata,
            ),
            lambda: self.gateway.find_refund(payment_id, key),
            idempotency_key=key,
        )
        status = getattr(refund, "status", "succeeded")
        if status not in REFUND_OK_STATUSES:
            logger.warning("Stripe refund %s for %s in status %s.", refund.id, key, status)
            raise PaymentFailed(f"Refund could not be completed (status: {status}).")

        refunded_amount = amount
        if getattr(refund, "amount", None) is not None:
            refunded_amount = from_cents(refund.amount)
        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.REFUND,
            stage=stage,
            amount=refunded_amount,
            currency=self.gateway.currency,
            stripe_id=refund.id,
            idempotency_key=key,
        )
        return refund.id

    @staticmethod
    def _refundable(booking: Booking, stage: str, paid) -> Decimal:
        """What is left to refund on a stage after earlier refunds."""
        return max(_ZERO, Decimal(paid or 0) - refunded_total(booking, stage))

    def settle_cancellation(
        self,
        booking: Booking,
        actor_role: Optional[str],
        *,
        reason: str = "",
        today: date | None = None,
    ) -> list[RefundRecord]:
        """
        Refund what the renter is owed when a booking is rejected or cancelled.

        Before the rental stage was charged the whole upfront amount goes
        back. Afterwards the booking's cancellation policy decides, unless the
        owner initiated it, in which case everything is refunded.
        """
        if not booking.rental_payment_id or actor_role == "owner":
            upfront = self._refundable(booking, Transaction.Stage.UPFRONT, booking.upfront_amount)
            rental = _ZERO
            if booking.rental_payment_id:
                rental = self._refundable(booking, Transaction.Stage.RENTAL, booking.rental_amount)
            amounts = CancellationRefund(upfront=upfront, rental=rental)
        else:
            amounts = compute_cancellation_refund(booking, today=today)

        records: list[RefundRecord] = []
        for stage, payment_id, amount in (
            (Transaction.Stage.UPFRONT, booking.upfront_payment_id, amounts.upfront),
            (Transaction.Stage.RENTAL, booking.rental_payment_id, amounts.rental),
        ):
            refund_id = self.refund(booking, payment_id, amount, stage=stage, reason=reason)
            if refund_id:
                records.append(RefundRecord(stage=stage, amount=amount, refund_id=refund_id))

        if records:
            booking.payment_status = Booking.PaymentStatus.REFUNDED
        return records
