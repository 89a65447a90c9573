"""Availability conflict detection over inclusive date ranges."""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from django.core.cache import cache

from .cache import availability_cache_key, availability_cache_timeout
from .exceptions import BookingConflict
from .models import Booking

# Statuses that hold dates. Pending requests may overlap each other; the
# conflict is enforced again when an owner confirms.
BLOCKING_STATUSES = (
    Booking.Status.CONFIRMED,
    Booking.Status.ACTIVE,
)


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """
    Inclusive overlap: a checkout day equal to another booking's pickup day
    counts as a collision.
    """
    return start_a <= end_b and end_a >= start_b


def blocking_bookings(
    listing_id: int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
):
    qs = Booking.objects.filter(listing_id=listing_id, status__in=BLOCKING_STATUSES)
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    return qs.filter(start_date__lte=end_date, end_date__gte=start_date)


def has_conflict(
    listing_id: int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
) -> bool:
    """
    Return True when a confirmed or active booking overlaps the range.

    Callers that write afterwards must hold the listing row lock so the check
    and the write happen in one transaction.
    """
    return blocking_bookings(
        listing_id,
        start_date,
        end_date,
        exclude_booking_id=exclude_booking_id,
    ).exists()


def ensure_available(
    listing_id: int,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[UUID | str] = None,
) -> None:
    if has_conflict(listing_id, start_date, end_date, exclude_booking_id=exclude_booking_id):
        raise BookingConflict()


def blocked_ranges(listing_id: int) -> list[dict[str, str]]:
    """Return the ordered date ranges held by blocking bookings, cached per listing."""
    cache_key = availability_cache_key(listing_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    rows = (
        Booking.objects.filter(listing_id=listing_id, status__in=BLOCKING_STATUSES)
        .order_by("start_date", "end_date")
        .values_list("start_date", "end_date")
    )
    ranges = [
        {"start_date": start.isoformat(), "end_date": end.isoformat()} for start, end in rows
    ]
    cache.set(cache_key, ranges, availability_cache_timeout())
    return ranges
