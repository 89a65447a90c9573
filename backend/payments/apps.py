"""Application configuration for payments."""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Register the payments app (Stripe stages and the transaction ledger)."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
