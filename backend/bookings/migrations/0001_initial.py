import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _money():
    return models.DecimalField(decimal_places=2, default=0, max_digits=10)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("start_date", models.DateField()),
                (
                    "end_date",
                    models.DateField(
                        help_text="Last rental day (inclusive), on or after start_date."
                    ),
                ),
                ("days", models.PositiveIntegerField(default=1)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_owner_approval", "pending owner approval"),
                            ("confirmed", "confirmed"),
                            ("active", "active"),
                            ("completed", "completed"),
                            ("rejected", "rejected"),
                            ("cancelled", "cancelled"),
                        ],
                        default="pending_owner_approval",
                        max_length=32,
                    ),
                ),
                ("status_reason", models.TextField(blank=True, default="")),
                ("daily_price", _money()),
                ("subtotal", _money()),
                ("service_fee", _money()),
                ("delivery_fee", _money()),
                (
                    "guarantee_tier",
                    models.CharField(
                        choices=[
                            ("none", "none"),
                            ("basic", "basic"),
                            ("standard", "standard"),
                            ("premium", "premium"),
                        ],
                        default="none",
                        max_length=16,
                    ),
                ),
                ("guarantee_cost", _money()),
                ("gear_value", _money()),
                (
                    "loyalty_fee_reduction",
                    models.DecimalField(decimal_places=2, default=0, max_digits=4),
                ),
                ("total_price", _money()),
                ("upfront_amount", _money()),
                ("rental_amount", _money()),
                (
                    "payment_stage",
                    models.CharField(
                        choices=[
                            ("upfront", "upfront"),
                            ("rental", "rental"),
                            ("settled", "settled"),
                        ],
                        default="upfront",
                        max_length=16,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "pending"),
                            ("paid", "paid"),
                            ("failed", "failed"),
                            ("refunded", "refunded"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("upfront_payment_id", models.CharField(blank=True, default="", max_length=120)),
                ("rental_payment_id", models.CharField(blank=True, default="", max_length=120)),
                ("stripe_customer_id", models.CharField(blank=True, default="", max_length=120)),
                (
                    "stripe_payment_method_id",
                    models.CharField(blank=True, default="", max_length=120),
                ),
                (
                    "delivery_method",
                    models.CharField(
                        choices=[
                            ("pickup", "pickup"),
                            ("delivery", "delivery"),
                            ("meetup", "meetup"),
                        ],
                        default="pickup",
                        max_length=16,
                    ),
                ),
                ("pickup_location", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("owner_notes", models.TextField(blank=True, default="")),
                ("renter_notes", models.TextField(blank=True, default="")),
                ("checkout_condition", models.TextField(blank=True, default="")),
                ("return_condition", models.TextField(blank=True, default="")),
                ("idempotency_key", models.CharField(max_length=128, unique=True)),
                (
                    "cancellation_policy",
                    models.CharField(
                        choices=[
                            ("flexible", "Flexible"),
                            ("moderate", "Moderate"),
                            ("strict", "Strict"),
                        ],
                        default="flexible",
                        max_length=16,
                    ),
                ),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("picked_up_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="listings.listing",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_owner",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["listing", "status", "start_date", "end_date"],
                        name="booking_listing_window_idx",
                    ),
                    models.Index(fields=["renter", "status"], name="booking_renter_status_idx"),
                    models.Index(fields=["owner", "status"], name="booking_owner_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("start_date__lte", models.F("end_date"))),
                        name="booking_start_on_or_before_end",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            (
                                "total_price",
                                models.F("subtotal")
                                + models.F("service_fee")
                                + models.F("delivery_fee")
                                + models.F("guarantee_cost"),
                            )
                        ),
                        name="booking_total_matches_components",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BookingEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("created", "created"),
                            ("status_changed", "status changed"),
                            ("payment_failed", "payment failed"),
                            ("refund_issued", "refund issued"),
                            ("notes_updated", "notes updated"),
                        ],
                        max_length=32,
                    ),
                ),
                ("payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="booking_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["booking", "created_at"], name="booking_event_timeline_idx"
                    )
                ],
            },
        ),
    ]
