from __future__ import annotations

import re

from rest_framework.throttling import UserRateThrottle

from .exceptions import RateLimited

_PERIODS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_RATE_RE = re.compile(r"^(?P<count>\d+)/(?P<multiplier>\d*)(?P<unit>[smhd])\w*$")


class BookingUpdateRateThrottle(UserRateThrottle):
    """
    Per-caller limit on booking updates.

    Accepts multi-unit periods such as ``20/15m`` in addition to DRF's
    ``20/minute`` style.
    """

    scope = "booking_updates"

    def parse_rate(self, rate):
        if rate is None:
            return (None, None)
        match = _RATE_RE.match(rate.strip())
        if not match:
            raise ValueError(f"Invalid throttle rate '{rate}'.")
        multiplier = int(match.group("multiplier") or 1)
        return int(match.group("count")), multiplier * _PERIODS[match.group("unit")]


def raise_rate_limited(wait: float | None) -> None:
    detail = "Too many booking updates. Try again later."
    if wait:
        detail = f"Too many booking updates. Try again in {int(wait) + 1} seconds."
    exc = RateLimited(detail)
    # DRF's handler turns ``wait`` into a Retry-After header.
    exc.wait = wait
    raise exc
