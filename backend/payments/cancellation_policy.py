"""Refund policies applied when a renter cancels a confirmed booking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict

from django.utils import timezone

from .ledger import refunded_total
from .models import Transaction

_ZERO = Decimal("0.00")
_HALF = Decimal("0.5")
_CENT = Decimal("0.01")


@dataclass(frozen=True)
class CancellationRefund:
    """Amounts to refund per payment stage."""

    upfront: Decimal
    rental: Decimal

    @property
    def total(self) -> Decimal:
        return self.upfront + self.rental


PolicyFn = Callable[..., CancellationRefund]
_POLICIES: Dict[str, PolicyFn] = {}


def _quantize(value: Decimal) -> Decimal:
    """Round a Decimal value to cents using HALF_UP."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def register_policy(name: str) -> Callable[[PolicyFn], PolicyFn]:
    """Register a cancellation policy under ``name``."""

    def decorator(fn: PolicyFn) -> PolicyFn:
        _POLICIES[name] = fn
        return fn

    return decorator


def get_policy(name: str | None) -> PolicyFn:
    try:
        return _POLICIES[(name or "flexible").strip().lower()]
    except KeyError:
        raise KeyError(f"Unknown cancellation policy '{name}'.") from None


def registered_policies() -> list[str]:
    return sorted(_POLICIES)


def days_until_start(today: date, start_date: date | None) -> int:
    """Return (start_date - today).days."""
    if not start_date:
        return 0
    return (start_date - today).days


@register_policy("flexible")
def flexible(*, upfront_amount: Decimal, rental_amount: Decimal, days_before: int):
    if days_before >= 1:
        return CancellationRefund(upfront=_quantize(upfront_amount), rental=_quantize(rental_amount))
    return CancellationRefund(upfront=_ZERO, rental=_quantize(rental_amount * _HALF))


@register_policy("moderate")
def moderate(*, upfront_amount: Decimal, rental_amount: Decimal, days_before: int):
    if days_before >= 5:
        return CancellationRefund(upfront=_quantize(upfront_amount), rental=_quantize(rental_amount))
    return CancellationRefund(upfront=_ZERO, rental=_quantize(rental_amount * _HALF))


@register_policy("strict")
def strict(*, upfront_amount: Decimal, rental_amount: Decimal, days_before: int):
    # Platform, delivery and guarantee fees are never refunded.
    if days_before >= 7:
        return CancellationRefund(upfront=_ZERO, rental=_quantize(rental_amount * _HALF))
    return CancellationRefund(upfront=_ZERO, rental=_ZERO)


def compute_cancellation_refund(booking, *, today: date | None = None) -> CancellationRefund:
    """
    Apply the booking's policy snapshot to its paid stages, capped at what is
    still refundable for each stage.
    """
    today = today or timezone.localdate()
    policy = get_policy(booking.cancellation_policy)
    upfront_paid = Decimal(booking.upfront_amount or 0)
    rental_paid = Decimal(booking.rental_amount or 0)
    refund = policy(
        upfront_amount=upfront_paid,
        rental_amount=rental_paid,
        days_before=days_until_start(today, booking.start_date),
    )
    upfront_left = upfront_paid - refunded_total(booking, Transaction.Stage.UPFRONT)
    rental_left = rental_paid - refunded_total(booking, Transaction.Stage.RENTAL)
    return CancellationRefund(
        upfront=max(_ZERO, min(refund.upfront, upfront_left)),
        rental=max(_ZERO, min(refund.rental, rental_left)),
    )
