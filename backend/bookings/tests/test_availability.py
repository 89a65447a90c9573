"""Tests for conflict detection over inclusive booking ranges."""

from __future__ import annotations

from datetime import date

import pytest

from bookings.availability import blocked_ranges, ensure_available, has_conflict, ranges_overlap
from bookings.exceptions import BookingConflict
from bookings.models import Booking

pytestmark = pytest.mark.django_db


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ((date(2024, 4, 1), date(2024, 4, 5)), (date(2024, 4, 3), date(2024, 4, 7)), True),
        ((date(2024, 4, 1), date(2024, 4, 5)), (date(2024, 4, 5), date(2024, 4, 7)), True),
        ((date(2024, 4, 1), date(2024, 4, 5)), (date(2024, 4, 6), date(2024, 4, 7)), False),
        ((date(2024, 4, 3), date(2024, 4, 3)), (date(2024, 4, 1), date(2024, 4, 5)), True),
    ],
)
def test_ranges_overlap_is_inclusive(a, b, expected):
    assert ranges_overlap(*a, *b) is expected
    assert ranges_overlap(*b, *a) is expected


def test_overlapping_confirmed_booking_conflicts(listing, booking_factory):
    booking_factory(
        start_date=date(2024, 4, 1),
        end_date=date(2024, 4, 5),
        status=Booking.Status.CONFIRMED,
    )

    assert has_conflict(listing.id, date(2024, 4, 3), date(2024, 4, 7))
    with pytest.raises(BookingConflict) as excinfo:
        ensure_available(listing.id, date(2024, 4, 3), date(2024, 4, 7))
    assert excinfo.value.status_code == 409


def test_touching_end_date_conflicts(listing, booking_factory):
    booking_factory(
        start_date=date(2024, 4, 1),
        end_date=date(2024, 4, 5),
        status=Booking.Status.ACTIVE,
    )

    assert has_conflict(listing.id, date(2024, 4, 5), date(2024, 4, 8))
    assert not has_conflict(listing.id, date(2024, 4, 6), date(2024, 4, 8))


@pytest.mark.parametrize(
    "status",
    [
        Booking.Status.PENDING_OWNER_APPROVAL,
        Booking.Status.REJECTED,
        Booking.Status.CANCELLED,
        Booking.Status.COMPLETED,
    ],
)
def test_non_blocking_statuses_do_not_conflict(listing, booking_factory, status):
    booking_factory(start_date=date(2024, 4, 1), end_date=date(2024, 4, 5), status=status)

    assert not has_conflict(listing.id, date(2024, 4, 1), date(2024, 4, 5))


def test_excluded_booking_is_ignored(listing, booking_factory):
    booking = booking_factory(
        start_date=date(2024, 4, 1),
        end_date=date(2024, 4, 5),
        status=Booking.Status.CONFIRMED,
    )

    assert not has_conflict(
        listing.id,
        date(2024, 4, 1),
        date(2024, 4, 5),
        exclude_booking_id=booking.pk,
    )


def test_other_listing_does_not_conflict(listing, booking_factory, other_user):
    other_listing = type(listing).objects.create(
        owner=other_user,
        title="Tent",
        daily_price=listing.daily_price,
        status=listing.Status.ACTIVE,
    )
    booking_factory(
        listing_override=other_listing,
        start_date=date(2024, 4, 1),
        end_date=date(2024, 4, 5),
        status=Booking.Status.CONFIRMED,
    )

    assert not has_conflict(listing.id, date(2024, 4, 1), date(2024, 4, 5))


def test_blocked_ranges_refresh_after_booking_changes(listing, booking_factory):
    assert blocked_ranges(listing.id) == []

    booking = booking_factory(
        start_date=date(2024, 4, 10),
        end_date=date(2024, 4, 12),
        status=Booking.Status.CONFIRMED,
    )
    booking_factory(
        start_date=date(2024, 4, 1),
        end_date=date(2024, 4, 3),
        status=Booking.Status.ACTIVE,
    )

    assert blocked_ranges(listing.id) == [
        {"start_date": "2024-04-01", "end_date": "2024-04-03"},
        {"start_date": "2024-04-10", "end_date": "2024-04-12"},
    ]

    booking.status = Booking.Status.CANCELLED
    booking.save(update_fields=["status"])

    assert blocked_ranges(listing.id) == [
        {"start_date": "2024-04-01", "end_date": "2024-04-03"},
    ]
