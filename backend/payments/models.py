from django.conf import settings
from django.db import models


class Transaction(models.Model):
    """Ledger row for a single money movement against a booking."""

    class Kind(models.TextChoices):
        UPFRONT_CHARGE = "UPFRONT_CHARGE", "Upfront charge"
        RENTAL_CHARGE = "RENTAL_CHARGE", "Rental charge"
        REFUND = "REFUND", "Refund"
        DECLINE = "DECLINE", "Declined attempt"

    class Stage(models.TextChoices):
        UPFRONT = "upfront", "Upfront"
        RENTAL = "rental", "Rental"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transactions",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="transactions",
        null=True,
        blank=True,
    )
    kind = models.CharField(max_length=64, choices=Kind.choices)
    stage = models.CharField(max_length=16, choices=Stage.choices)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=8, default="cad")
    stripe_id = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Related Stripe PaymentIntent / Refund id.",
    )
    idempotency_key = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "kind"], name="payments_tx_booking_kind_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.user} {self.kind} {self.amount} {self.currency}"
