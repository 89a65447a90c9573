"""Deterministic booking price breakdown."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from .exceptions import InvalidDateRange, ValidationFailed
from .fees import apply_loyalty_rebate, guarantee_premium, round_whole

CENT = Decimal("0.01")
DELIVERY_METHODS = ("pickup", "delivery", "meetup")


def q2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    days: int
    daily_price: Decimal
    subtotal: Decimal
    service_fee: Decimal
    delivery_fee: Decimal
    guarantee_tier: str
    guarantee_cost: Decimal
    loyalty_fee_reduction: Decimal
    total_price: Decimal

    @property
    def upfront_amount(self) -> Decimal:
        """Charged at request time: platform fee, delivery and guarantee."""
        return self.service_fee + self.delivery_fee + self.guarantee_cost

    @property
    def rental_amount(self) -> Decimal:
        """Charged when the owner confirms."""
        return self.subtotal

    def as_dict(self) -> dict[str, str]:
        """Serialize with string decimals for stable JSON payloads."""
        return {
            "days": str(self.days),
            "daily_price": str(self.daily_price),
            "subtotal": str(self.subtotal),
            "service_fee": str(self.service_fee),
            "delivery_fee": str(self.delivery_fee),
            "guarantee_tier": self.guarantee_tier,
            "guarantee_cost": str(self.guarantee_cost),
            "loyalty_fee_reduction": str(self.loyalty_fee_reduction),
            "total_price": str(self.total_price),
            "upfront_amount": str(self.upfront_amount),
            "rental_amount": str(self.rental_amount),
        }


def rental_days(start_date: date, end_date: date) -> int:
    """Billable days, ``max(1, ceil(span))``; a same-day rental counts as one day."""
    if end_date < start_date:
        raise InvalidDateRange()
    span_seconds = (end_date - start_date).total_seconds()
    return max(1, math.ceil(span_seconds / 86400))


def service_fee_rate() -> Decimal:
    return Decimal(str(getattr(settings, "BOOKING_SERVICE_FEE_RATE", Decimal("0.10"))))


def compute_price(
    *,
    daily_rate: Decimal,
    start_date: date,
    end_date: date,
    delivery_method: str = "pickup",
    delivery_fee: Decimal = Decimal("0"),
    guarantee_tier: str | None = "none",
    gear_value: Decimal = Decimal("0"),
    loyalty_fee_reduction: Decimal = Decimal("0"),
) -> PriceBreakdown:
    """
    Price a rental.

    - subtotal = daily_rate * days
    - service_fee = round(subtotal * fee rate * (1 - loyalty reduction))
    - delivery_fee only applies to the "delivery" method
    - guarantee_cost = round(gear_value * tier % * max(1, days / 7))
    - total_price = subtotal + service_fee + delivery_fee + guarantee_cost

    ``round`` is half-up to whole currency units. Nothing is persisted.
    """
    days = rental_days(start_date, end_date)

    daily_rate = Decimal(daily_rate)
    delivery_fee = Decimal(delivery_fee or 0)
    gear_value = Decimal(gear_value or 0)
    loyalty_fee_reduction = Decimal(loyalty_fee_reduction or 0)
    if daily_rate < 0:
        raise ValidationFailed("Daily price cannot be negative.")
    if delivery_fee < 0:
        raise ValidationFailed("Delivery fee cannot be negative.")
    if delivery_method not in DELIVERY_METHODS:
        raise ValidationFailed(f"Unknown delivery method '{delivery_method}'.")

    subtotal = q2(daily_rate * days)
    service_fee = round_whole(
        apply_loyalty_rebate(subtotal * service_fee_rate(), loyalty_fee_reduction)
    )
    applied_delivery_fee = q2(delivery_fee) if delivery_method == "delivery" else q2(Decimal("0"))
    tier = (guarantee_tier or "none").strip().lower()
    guarantee_cost = guarantee_premium(gear_value, tier, days)
    total_price = subtotal + service_fee + applied_delivery_fee + guarantee_cost

    return PriceBreakdown(
        days=days,
        daily_price=q2(daily_rate),
        subtotal=subtotal,
        service_fee=service_fee,
        delivery_fee=applied_delivery_fee,
        guarantee_tier=tier,
        guarantee_cost=guarantee_cost,
        loyalty_fee_reduction=loyalty_fee_reduction,
        total_price=q2(total_price),
    )
