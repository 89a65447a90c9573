from django.db.models import Q, QuerySet

from .models import Listing


def search_listings(
    qs: QuerySet[Listing],
    q: str | None,
    price_min: float | None,
    price_max: float | None,
    location: str | None = None,
    owner_id: int | None = None,
) -> QuerySet[Listing]:
    if q:
        qs = qs.filter(
            Q(title__icontains=q) | Q(description__icontains=q) | Q(location__icontains=q)
        )
    if price_min is not None:
        qs = qs.filter(daily_price__gte=price_min)
    if price_max is not None:
        qs = qs.filter(daily_price__lte=price_max)
    if location:
        qs = qs.filter(location__iexact=location)
    if owner_id is not None:
        qs = qs.filter(owner_id=owner_id)
    return qs.filter(status=Listing.Status.ACTIVE).order_by("-created_at")
