"""Database models for rental bookings."""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from listings.models import Listing


class Booking(models.Model):
    """A renter's reservation of a listing, with its price snapshot and payment stages."""

    class Status(models.TextChoices):
        PENDING_OWNER_APPROVAL = "pending_owner_approval", "pending owner approval"
        CONFIRMED = "confirmed", "confirmed"
        ACTIVE = "active", "active"
        COMPLETED = "completed", "completed"
        REJECTED = "rejected", "rejected"
        CANCELLED = "cancelled", "cancelled"

    class PaymentStage(models.TextChoices):
        UPFRONT = "upfront", "upfront"
        RENTAL = "rental", "rental"
        SETTLED = "settled", "settled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending", "pending"
        PAID = "paid", "paid"
        FAILED = "failed", "failed"
        REFUNDED = "refunded", "refunded"

    class DeliveryMethod(models.TextChoices):
        PICKUP = "pickup", "pickup"
        DELIVERY = "delivery", "delivery"
        MEETUP = "meetup", "meetup"

    class GuaranteeTier(models.TextChoices):
        NONE = "none", "none"
        BASIC = "basic", "basic"
        STANDARD = "standard", "standard"
        PREMIUM = "premium", "premium"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.REJECTED, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    listing = models.ForeignKey(
        Listing,
        related_name="bookings",
        on_delete=models.PROTECT,
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_owner",
        on_delete=models.PROTECT,
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_renter",
        on_delete=models.PROTECT,
    )
    start_date = models.DateField()
    end_date = models.DateField(help_text="Last rental day (inclusive), on or after start_date.")
    days = models.PositiveIntegerField(default=1)
    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.PENDING_OWNER_APPROVAL,
    )
    status_reason = models.TextField(blank=True, default="")

    daily_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    service_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    guarantee_tier = models.CharField(
        max_length=16,
        choices=GuaranteeTier.choices,
        default=GuaranteeTier.NONE,
    )
    guarantee_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    gear_value = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    loyalty_fee_reduction = models.DecimalField(max_digits=4, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    upfront_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    rental_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    payment_stage = models.CharField(
        max_length=16,
        choices=PaymentStage.choices,
        default=PaymentStage.UPFRONT,
    )
    payment_status = models.CharField(
        max_length=16,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    upfront_payment_id = models.CharField(max_length=120, blank=True, default="")
    rental_payment_id = models.CharField(max_length=120, blank=True, default="")
    stripe_customer_id = models.CharField(max_length=120, blank=True, default="")
    stripe_payment_method_id = models.CharField(max_length=120, blank=True, default="")

    delivery_method = models.CharField(
        max_length=16,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.PICKUP,
    )
    pickup_location = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    owner_notes = models.TextField(blank=True, default="")
    renter_notes = models.TextField(blank=True, default="")
    checkout_condition = models.TextField(blank=True, default="")
    return_condition = models.TextField(blank=True, default="")

    idempotency_key = models.CharField(max_length=128, unique=True)
    cancellation_policy = models.CharField(
        max_length=16,
        choices=Listing.CancellationPolicy.choices,
        default=Listing.CancellationPolicy.FLEXIBLE,
    )

    confirmed_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["listing", "status", "start_date", "end_date"],
                name="booking_listing_window_idx",
            ),
            models.Index(fields=["renter", "status"], name="booking_renter_status_idx"),
            models.Index(fields=["owner", "status"], name="booking_owner_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(start_date__lte=F("end_date")),
                name="booking_start_on_or_before_end",
            ),
            models.CheckConstraint(
                condition=Q(
                    total_price=F("subtotal")
                    + F("service_fee")
                    + F("delivery_fee")
                    + F("guarantee_cost")
                ),
                name="booking_total_matches_components",
            ),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking {self.pk} for {self.listing_id} ({self.status})"


class BookingEvent(models.Model):
    """Append-only timeline entry recorded alongside each booking change."""

    class Type(models.TextChoices):
        CREATED = "created", "created"
        STATUS_CHANGED = "status_changed", "status changed"
        PAYMENT_FAILED = "payment_failed", "payment failed"
        REFUND_ISSUED = "refund_issued", "refund issued"
        NOTES_UPDATED = "notes_updated", "notes updated"

    booking = models.ForeignKey(
        Booking,
        related_name="events",
        on_delete=models.CASCADE,
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="booking_events",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [models.Index(fields=["booking", "created_at"], name="booking_event_timeline_idx")]

    def __str__(self) -> str:
        return f"{self.type} on booking {self.booking_id}"
