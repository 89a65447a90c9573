from __future__ import annotations

from typing import Iterable, Set

from django.conf import settings
from django.core.cache import cache

AVAILABILITY_CACHE_VERSION_KEY = "bookings:availability:version:{listing_id}"


def _get_version(listing_id: int) -> int:
    key = AVAILABILITY_CACHE_VERSION_KEY.format(listing_id=listing_id)
    version = cache.get(key)
    if version is None:
        cache.add(key, 1)
        return 1
    try:
        return int(version)
    except (TypeError, ValueError):
        return 1


def _bump_version(listing_id: int) -> None:
    key = AVAILABILITY_CACHE_VERSION_KEY.format(listing_id=listing_id)
    try:
        cache.incr(key)
    except ValueError:
        # incr raises ValueError when the key expired or was never set.
        cache.set(key, _get_version(listing_id) + 1, timeout=None)


def availability_cache_key(listing_id: int) -> str:
    return f"bookings:availability:l{listing_id}:v{_get_version(listing_id)}"


def invalidate_availability_cache(listing_ids: Iterable[int | None]) -> None:
    unique_ids: Set[int] = set()
    for listing_id in listing_ids:
        if listing_id:
            unique_ids.add(int(listing_id))
    for listing_id in unique_ids:
        _bump_version(listing_id)


def availability_cache_timeout() -> int:
    return getattr(settings, "CACHE_TTL_AVAILABILITY", 120)
