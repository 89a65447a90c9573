"""Booking lifecycle orchestration: creation, transitions and detail updates.

All writes for a listing are serialized by locking the listing row and bumping
its ``booking_version`` in the same transaction as the conflict check. Booking
rows are locked for transitions so a double submit sees the committed status.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from listings.models import Listing
from notifications import tasks as notification_tasks
from payments.coordinator import PaymentStageCoordinator

from .availability import ensure_available
from .exceptions import (
    Forbidden,
    InternalError,
    InvalidDateRange,
    InvalidState,
    InvalidStateTransition,
    NotFound,
    PaymentDeclined,
    PaymentFailed,
    ValidationFailed,
)
from .fees import loyalty_fee_reduction
from .models import Booking, BookingEvent
from .pricing import compute_price
from .state_machine import OWNER, RENTER, actor_role, apply_transition, role_may_request

logger = logging.getLogger(__name__)

# Namespace for deriving booking ids from creation idempotency keys.
BOOKING_ID_NAMESPACE = uuid.UUID("6f1c8f0e-3a2b-5d4e-9c7a-1b2d3e4f5a6b")

OWNER_ONLY_FIELDS = frozenset({"owner_notes"})
RENTER_ONLY_FIELDS = frozenset({"renter_notes"})
SHARED_FIELDS = frozenset({"checkout_condition", "return_condition"})
DETAIL_FIELDS = OWNER_ONLY_FIELDS | RENTER_ONLY_FIELDS | SHARED_FIELDS

EXPIRED_REASON = "Request expired before the owner responded."


@dataclass(frozen=True)
class CreateResult:
    booking: Booking
    created: bool


def derive_idempotency_key(
    *,
    renter_id: int,
    listing_id: int,
    start_date: date,
    end_date: date,
    attempt: int = 0,
) -> str:
    raw = f"{renter_id}:{listing_id}:{start_date.isoformat()}:{end_date.isoformat()}:{attempt}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def scoped_idempotency_key(renter_id: int, client_key: str) -> str:
    """Client keys are scoped to the renter so two users cannot collide."""
    raw = f"client:{renter_id}:{client_key.strip()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def booking_id_for_key(key: str) -> uuid.UUID:
    return uuid.uuid5(BOOKING_ID_NAMESPACE, key)


def _creation_key(
    *,
    renter,
    listing_id: int,
    start_date: date,
    end_date: date,
    client_key: Optional[str],
) -> str:
    if client_key and client_key.strip():
        return scoped_idempotency_key(renter.id, client_key)
    # Terminal bookings for the same dates free up a new attempt.
    attempt = Booking.objects.filter(
        renter_id=renter.id,
        listing_id=listing_id,
        start_date=start_date,
        end_date=end_date,
        status__in=Booking.TERMINAL_STATUSES,
    ).count()
    return derive_idempotency_key(
        renter_id=renter.id,
        listing_id=listing_id,
        start_date=start_date,
        end_date=end_date,
        attempt=attempt,
    )


def _record_event(booking: Booking, type_: str, actor=None, **payload: Any) -> BookingEvent:
    return BookingEvent.objects.create(
        booking=booking,
        type=type_,
        actor=actor,
        payload=payload,
    )


def _queue_request_email(booking: Booking) -> None:
    try:
        notification_tasks.send_booking_request_email.delay(booking.owner_id, str(booking.id))
    except Exception:
        logger.info(
            "notifications: could not queue send_booking_request_email for booking %s",
            booking.id,
            exc_info=True,
        )


def _queue_status_email(recipient_id: int, booking: Booking) -> None:
    try:
        notification_tasks.send_booking_status_email.delay(
            recipient_id,
            str(booking.id),
            booking.status,
        )
    except Exception:
        logger.info(
            "notifications: could not queue send_booking_status_email for booking %s",
            booking.id,
            exc_info=True,
        )


def _validate_dates(start_date: date, end_date: date, today: date) -> None:
    if not start_date or not end_date:
        raise InvalidDateRange("Start and end dates are required.")
    if end_date < start_date:
        raise InvalidDateRange("End date must be on or after the start date.")
    if start_date < today:
        raise InvalidDateRange("Start date cannot be in the past.")


def create_booking(
    *,
    listing_id: int,
    renter,
    start_date: date,
    end_date: date,
    delivery_method: str = Booking.DeliveryMethod.PICKUP,
    guarantee_tier: str = Booking.GuaranteeTier.NONE,
    pickup_location: str = "",
    notes: str = "",
    payment_method_id: str = "",
    customer_id: str = "",
    upfront_payment_intent_id: str = "",
    idempotency_key: Optional[str] = None,
    today: Optional[date] = None,
    coordinator: Optional[PaymentStageCoordinator] = None,
) -> CreateResult:
    """
    Create a booking request in PENDING_OWNER_APPROVAL with its upfront stage paid.

    Retrying with the same idempotency key (or the same renter, listing and
    dates) returns the existing booking without charging again.
    """
    key = _creation_key(
        renter=renter,
        listing_id=listing_id,
        start_date=start_date,
        end_date=end_date,
        client_key=idempotency_key,
    )
    existing = Booking.objects.filter(idempotency_key=key).first()
    if existing is not None:
        return CreateResult(existing, False)

    listing = Listing.objects.filter(pk=listing_id).first()
    if listing is None:
        raise NotFound("Listing not found.")
    if not listing.is_bookable:
        raise InvalidState("Listing is not available for booking.")
    if listing.owner_id == renter.id:
        raise Forbidden("You cannot book your own listing.")
    if not getattr(renter, "can_rent", True):
        raise Forbidden("Your account is not allowed to rent items.")
    _validate_dates(start_date, end_date, today or timezone.localdate())

    coordinator = coordinator or PaymentStageCoordinator()
    booking: Optional[Booking] = None
    try:
        with transaction.atomic():
            locked = (
                Listing.objects.select_for_update(of=("self",))
                .select_related("owner")
                .get(pk=listing.pk)
            )
            if not locked.is_bookable:
                raise InvalidState("Listing is not available for booking.")
            ensure_available(locked.pk, start_date, end_date)

            price = compute_price(
                daily_rate=locked.daily_price,
                start_date=start_date,
                end_date=end_date,
                delivery_method=delivery_method,
                delivery_fee=locked.delivery_fee,
                guarantee_tier=guarantee_tier,
                gear_value=locked.gear_value,
                loyalty_fee_reduction=loyalty_fee_reduction(locked.owner.loyalty_tier),
            )
            booking = Booking(
                id=booking_id_for_key(key),
                listing=locked,
                owner=locked.owner,
                renter=renter,
                start_date=start_date,
                end_date=end_date,
                days=price.days,
                daily_price=price.daily_price,
                subtotal=price.subtotal,
                service_fee=price.service_fee,
                delivery_fee=price.delivery_fee,
                guarantee_tier=price.guarantee_tier,
                guarantee_cost=price.guarantee_cost,
                gear_value=locked.gear_value,
                loyalty_fee_reduction=price.loyalty_fee_reduction,
                total_price=price.total_price,
                upfront_amount=price.upfront_amount,
                rental_amount=price.rental_amount,
                payment_stage=Booking.PaymentStage.UPFRONT,
                payment_status=Booking.PaymentStatus.PAID,
                stripe_customer_id=(customer_id or renter.stripe_customer_id or "").strip(),
                stripe_payment_method_id=(payment_method_id or "").strip(),
                delivery_method=delivery_method,
                pickup_location=pickup_location or "",
                notes=notes or "",
                idempotency_key=key,
                cancellation_policy=locked.cancellation_policy,
            )

            if upfront_payment_intent_id:
                coordinator.link_upfront(booking, upfront_payment_intent_id, price.upfront_amount)
            elif price.upfront_amount > 0:
                coordinator.authorize_upfront(booking, price.upfront_amount)

            try:
                with transaction.atomic():
                    booking.save(force_insert=True)
                    Listing.objects.filter(pk=locked.pk).update(
                        booking_version=F("booking_version") + 1
                    )
                    if booking.upfront_payment_id:
                        coordinator.record_upfront(booking)
                    _record_event(
                        booking,
                        BookingEvent.Type.CREATED,
                        actor=renter,
                        total_price=str(booking.total_price),
                        upfront_payment_id=booking.upfront_payment_id,
                    )
            except IntegrityError:
                # A concurrent retry with the same key won; it carries the same
                # booking id and therefore the same Stripe payment.
                duplicate = Booking.objects.filter(idempotency_key=key).first()
                if duplicate is not None:
                    return CreateResult(duplicate, False)
                raise

            created = booking
            transaction.on_commit(lambda: _queue_request_email(created))
    except PaymentDeclined:
        # The booking row rolled back; keep the decline so a retry uses a new key.
        if booking is not None and not upfront_payment_intent_id:
            coordinator.record_decline(
                booking, Booking.PaymentStage.UPFRONT, booking.upfront_amount, attach=False
            )
        raise
    except DatabaseError as exc:
        logger.exception(
            "bookings: failed to persist booking",
            extra={"listing_id": listing_id, "renter_id": renter.id},
        )
        if booking is not None and booking.upfront_payment_id:
            try:
                coordinator.void_upfront(booking, booking.upfront_amount)
            except Exception:
                logger.exception(
                    "bookings: compensation refund failed for %s", booking.upfront_payment_id
                )
        raise InternalError() from exc

    logger.info(
        "bookings: created booking %s",
        booking.id,
        extra={"listing_id": listing_id, "renter_id": renter.id},
    )
    return CreateResult(booking, True)


def normalize_status(value: str) -> str:
    candidate = (value or "").strip().lower()
    if candidate not in Booking.Status.values:
        raise ValidationFailed(f"Unknown booking status '{value}'.")
    return candidate


def transition_booking(
    *,
    booking_id,
    actor,
    target_status: str,
    expected_status: Optional[str] = None,
    reason: str = "",
    today: Optional[date] = None,
    coordinator: Optional[PaymentStageCoordinator] = None,
) -> Booking:
    """
    Move a booking to ``target_status`` on behalf of ``actor``.

    Status, payment fields, timestamps and the timeline event are saved
    together. A failed rental charge leaves the booking pending with
    ``payment_status=failed`` and raises PaymentFailed.
    """
    target = normalize_status(target_status)
    coordinator = coordinator or PaymentStageCoordinator()
    payment_error: Optional[PaymentFailed] = None

    try:
        with transaction.atomic():
            booking = (
                Booking.objects.select_for_update(of=("self",))
                .select_related("renter")
                .filter(pk=booking_id)
                .first()
            )
            if booking is None:
                raise NotFound("Booking not found.")
            role = actor_role(booking, getattr(actor, "id", None))
            if role is None:
                raise Forbidden("Only the owner or renter can change this booking.")

            if booking.status == target and role_may_request(target, role):
                return booking
            if expected_status and normalize_status(expected_status) != booking.status:
                raise InvalidStateTransition(
                    f"Booking is {booking.status}, not {expected_status}."
                )
            apply_transition(booking.status, target, role)

            previous = booking.status
            now = timezone.now()
            update_fields = ["status", "status_reason", "payment_status", "updated_at"]
            refunds = []

            if target == Booking.Status.CONFIRMED:
                Listing.objects.select_for_update().get(pk=booking.listing_id)
                ensure_available(
                    booking.listing_id,
                    booking.start_date,
                    booking.end_date,
                    exclude_booking_id=booking.pk,
                )
                try:
                    coordinator.capture_rental(booking, booking.rental_amount)
                except PaymentFailed as exc:
                    payment_error = exc
                    if isinstance(exc, PaymentDeclined):
                        coordinator.record_decline(
                            booking, Booking.PaymentStage.RENTAL, booking.rental_amount
                        )
                    booking.payment_status = Booking.PaymentStatus.FAILED
                    booking.save(update_fields=["payment_status", "updated_at"])
                    _record_event(
                        booking,
                        BookingEvent.Type.PAYMENT_FAILED,
                        actor=actor,
                        stage=Booking.PaymentStage.RENTAL,
                        detail=str(exc.detail),
                    )
                else:
                    Listing.objects.filter(pk=booking.listing_id).update(
                        booking_version=F("booking_version") + 1
                    )
                    booking.payment_stage = Booking.PaymentStage.RENTAL
                    booking.payment_status = Booking.PaymentStatus.PAID
                    booking.confirmed_at = now
                    update_fields += ["payment_stage", "rental_payment_id", "confirmed_at"]
            elif target in (Booking.Status.REJECTED, Booking.Status.CANCELLED):
                refunds = coordinator.settle_cancellation(booking, role, reason=reason, today=today)
                if target == Booking.Status.REJECTED:
                    booking.rejected_at = now
                    update_fields.append("rejected_at")
                else:
                    booking.cancelled_at = now
                    update_fields.append("cancelled_at")
            elif target == Booking.Status.ACTIVE:
                booking.picked_up_at = now
                update_fields.append("picked_up_at")
            elif target == Booking.Status.COMPLETED:
                booking.completed_at = now
                booking.payment_stage = Booking.PaymentStage.SETTLED
                update_fields += ["completed_at", "payment_stage"]

            if payment_error is None:
                booking.status = target
                if reason:
                    booking.status_reason = reason
                booking.save(update_fields=update_fields)
                _record_event(
                    booking,
                    BookingEvent.Type.STATUS_CHANGED,
                    actor=actor,
                    from_status=previous,
                    to_status=target,
                    reason=reason,
                )
                for refund in refunds:
                    _record_event(
                        booking,
                        BookingEvent.Type.REFUND_ISSUED,
                        actor=actor,
                        stage=refund.stage,
                        amount=str(refund.amount),
                        refund_id=refund.refund_id,
                    )
                recipient_id = booking.renter_id if role == OWNER else booking.owner_id
                transaction.on_commit(lambda: _queue_status_email(recipient_id, booking))
    except DatabaseError as exc:
        logger.exception("bookings: failed to transition booking %s", booking_id)
        raise InternalError() from exc

    if payment_error is not None:
        logger.warning(
            "bookings: rental charge failed for booking %s",
            booking.id,
            extra={"booking_id": str(booking.id)},
        )
        raise payment_error

    logger.info(
        "bookings: booking %s moved %s -> %s",
        booking.id,
        previous,
        target,
        extra={"actor_role": role},
    )
    return booking


def assert_can_edit_fields(role: Optional[str], fields) -> None:
    unknown = set(fields) - DETAIL_FIELDS
    if unknown:
        raise ValidationFailed(f"Unsupported fields: {', '.join(sorted(unknown))}.")
    if role is None:
        raise Forbidden("Only the owner or renter can change this booking.")
    for field in sorted(fields):
        if field in OWNER_ONLY_FIELDS and role != OWNER:
            raise Forbidden(f"Only the owner can update {field}.")
        if field in RENTER_ONLY_FIELDS and role != RENTER:
            raise Forbidden(f"Only the renter can update {field}.")


def update_booking_details(*, booking_id, actor, changes: Mapping[str, Any]) -> Booking:
    """Apply notes/condition edits after a per-field role check."""
    if not changes:
        raise ValidationFailed("No changes supplied.")
    unknown = set(changes) - DETAIL_FIELDS
    if unknown:
        raise ValidationFailed(f"Unsupported fields: {', '.join(sorted(unknown))}.")

    with transaction.atomic():
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        if booking is None:
            raise NotFound("Booking not found.")
        role = actor_role(booking, getattr(actor, "id", None))
        if role is None:
            raise Forbidden("Only the owner or renter can change this booking.")

        assert_can_edit_fields(role, changes)

        for field, value in changes.items():
            setattr(booking, field, value or "")
        booking.save(update_fields=[*sorted(changes), "updated_at"])
        _record_event(
            booking,
            BookingEvent.Type.NOTES_UPDATED,
            actor=actor,
            fields=sorted(changes),
        )
    return booking


def expire_booking(
    booking_id,
    *,
    today: Optional[date] = None,
    coordinator: Optional[PaymentStageCoordinator] = None,
) -> bool:
    """
    Cancel a request the owner never answered once its start date has passed,
    refunding the upfront stage. Returns True when the booking was expired.
    """
    today = today or timezone.localdate()
    coordinator = coordinator or PaymentStageCoordinator()
    with transaction.atomic():
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        if booking is None:
            return False
        if booking.status != Booking.Status.PENDING_OWNER_APPROVAL:
            return False
        if booking.start_date >= today:
            return False

        refunds = coordinator.settle_cancellation(booking, None, reason=EXPIRED_REASON)
        booking.status = Booking.Status.CANCELLED
        booking.status_reason = EXPIRED_REASON
        booking.cancelled_at = timezone.now()
        booking.save(
            update_fields=[
                "status",
                "status_reason",
                "payment_status",
                "cancelled_at",
                "updated_at",
            ]
        )
        _record_event(
            booking,
            BookingEvent.Type.STATUS_CHANGED,
            from_status=Booking.Status.PENDING_OWNER_APPROVAL,
            to_status=Booking.Status.CANCELLED,
            reason=EXPIRED_REASON,
        )
        for refund in refunds:
            _record_event(
                booking,
                BookingEvent.Type.REFUND_ISSUED,
                stage=refund.stage,
                amount=str(refund.amount),
                refund_id=refund.refund_id,
            )
        renter_id = booking.renter_id
        transaction.on_commit(lambda: _queue_status_email(renter_id, booking))
    return True
