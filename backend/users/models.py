from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Primary user object; a user may both list gear and rent from others."""

    class LoyaltyTier(models.TextChoices):
        BRONZE = "bronze", "Bronze"
        SILVER = "silver", "Silver"
        GOLD = "gold", "Gold"
        PLATINUM = "platinum", "Platinum"

    email_verified = models.BooleanField(default=False)
    can_rent = models.BooleanField(default=True)
    can_list = models.BooleanField(default=True)
    stripe_customer_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Customer ID for renter payments.",
    )
    loyalty_tier = models.CharField(
        max_length=16,
        choices=LoyaltyTier.choices,
        default=LoyaltyTier.BRONZE,
        help_text="Owner loyalty tier; higher tiers earn a platform fee reduction.",
    )
