"""Celery tasks for bookings."""

from __future__ import annotations

import logging
from datetime import date

from celery import shared_task
from django.utils import timezone

from .exceptions import BookingError
from .lifecycle import expire_booking
from .models import Booking

logger = logging.getLogger(__name__)


@shared_task(name="bookings.expire_stale_requests")
def expire_stale_requests() -> int:
    """
    Cancel requests still awaiting the owner after their start date passed and
    refund the upfront stage.

    Returns the number of bookings expired.
    """
    today: date = timezone.localdate()
    stale_ids = list(
        Booking.objects.filter(
            status=Booking.Status.PENDING_OWNER_APPROVAL,
            start_date__lt=today,
        ).values_list("id", flat=True)
    )

    expired_count = 0
    for booking_id in stale_ids:
        try:
            if expire_booking(booking_id, today=today):
                expired_count += 1
        except BookingError:
            # Refund failures leave the booking pending; the next run retries it.
            logger.warning(
                "bookings: could not expire stale request %s",
                booking_id,
                exc_info=True,
            )

    if expired_count:
        logger.info("bookings: expired %s stale booking requests", expired_count)
    return expired_count
