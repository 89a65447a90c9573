import django_filters as filters
from django.db.models import Q

from .models import Booking


class BookingFilter(filters.FilterSet):
    """Filters for the caller's booking list: ``role``, ``status`` (comma separated)."""

    role = filters.ChoiceFilter(
        choices=(("owner", "owner"), ("renter", "renter")),
        method="filter_role",
    )
    status = filters.CharFilter(method="filter_status")
    listing = filters.NumberFilter(field_name="listing_id")

    class Meta:
        model = Booking
        fields = ["role", "status", "listing"]

    def filter_role(self, queryset, name, value):
        user = getattr(self.request, "user", None)
        if not user or not user.is_authenticated:
            return queryset.none()
        if value == "owner":
            return queryset.filter(owner=user)
        if value == "renter":
            return queryset.filter(renter=user)
        return queryset.filter(Q(owner=user) | Q(renter=user))

    def filter_status(self, queryset, name, value):
        statuses = [part.strip().lower() for part in (value or "").split(",") if part.strip()]
        if not statuses:
            return queryset
        return queryset.filter(status__in=statuses)
