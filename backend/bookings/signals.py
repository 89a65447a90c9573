from __future__ import annotations

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .cache import invalidate_availability_cache
from .models import Booking


@receiver(post_save, sender=Booking, dispatch_uid="bookings_availability_invalidate_on_save")
@receiver(post_delete, sender=Booking, dispatch_uid="bookings_availability_invalidate_on_delete")
def _invalidate_availability_cache(sender, instance: Booking, **kwargs):
    invalidate_availability_cache([instance.listing_id])
