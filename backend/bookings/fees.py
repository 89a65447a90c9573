"""Guarantee premium and loyalty fee modifiers applied on top of the base price."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from .exceptions import ValidationFailed

WHOLE_UNIT = Decimal("1")
WEEK_DAYS = Decimal("7")

# Premium charged per week, as a fraction of the declared gear value.
GUARANTEE_TIERS: dict[str, Decimal] = {
    "none": Decimal("0"),
    "basic": Decimal("0.08"),
    "standard": Decimal("0.12"),
    "premium": Decimal("0.18"),
}

# Platform service fee reduction granted to owners by loyalty tier.
LOYALTY_TIERS: dict[str, Decimal] = {
    "bronze": Decimal("0"),
    "silver": Decimal("0.05"),
    "gold": Decimal("0.10"),
    "platinum": Decimal("0.15"),
}


def round_whole(value: Decimal) -> Decimal:
    """Round half-up to whole currency units, keeping two decimal places."""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP).quantize(Decimal("0.01"))


def guarantee_tier_percentage(tier: str | None) -> Decimal:
    key = (tier or "none").strip().lower()
    try:
        return GUARANTEE_TIERS[key]
    except KeyError:
        raise ValidationFailed(f"Unknown guarantee tier '{tier}'.") from None


def guarantee_premium(gear_value: Decimal, tier: str | None, days: int) -> Decimal:
    """
    Price the damage guarantee: gear value times the tier percentage, scaled by
    the number of weeks with a one-week minimum.
    """
    pct = guarantee_tier_percentage(tier)
    if pct == 0:
        return Decimal("0.00")
    if gear_value < 0:
        raise ValidationFailed("Gear value cannot be negative.")
    weeks = max(Decimal("1"), Decimal(days) / WEEK_DAYS)
    return round_whole(gear_value * pct * weeks)


def loyalty_fee_reduction(tier: str | None) -> Decimal:
    """Return the service fee reduction for ``tier``; unknown tiers earn none."""
    if not tier:
        return Decimal("0")
    return LOYALTY_TIERS.get(tier.strip().lower(), Decimal("0"))


def apply_loyalty_rebate(fee: Decimal, reduction: Decimal) -> Decimal:
    if reduction < 0 or reduction > 1:
        raise ValidationFailed("Loyalty fee reduction must be between 0 and 1.")
    return fee * (Decimal("1") - reduction)
