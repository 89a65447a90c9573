from django.db.models import Q
from rest_framework import permissions, viewsets
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.pagination import PageNumberPagination

from .models import Listing
from .serializers import ListingSerializer
from .services import search_listings


class ListingPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


def _parse_float(raw):
    try:
        return float(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _parse_int(raw):
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


class ListingViewSet(viewsets.ReadOnlyModelViewSet):
    """Public read surface for listings; writes happen outside the booking engine."""

    serializer_class = ListingSerializer
    pagination_class = ListingPagination
    permission_classes = [permissions.AllowAny]

    def perform_authentication(self, request):
        """Downgrade to anonymous user when public actions receive invalid tokens."""
        try:
            return super().perform_authentication(request)
        except AuthenticationFailed:
            request._not_authenticated()

    def get_queryset(self):
        base_qs = Listing.objects.select_related("owner")
        if self.action == "retrieve":
            # Owners may still inspect their own drafts and inactive listings.
            user = self.request.user
            visible = Q(status=Listing.Status.ACTIVE)
            if user and user.is_authenticated:
                visible |= Q(owner_id=user.id)
            return base_qs.filter(visible)

        params = self.request.query_params
        return search_listings(
            qs=base_qs,
            q=params.get("q") or None,
            price_min=_parse_float(params.get("price_min")),
            price_max=_parse_float(params.get("price_max")),
            location=params.get("location") or None,
            owner_id=_parse_int(params.get("owner_id")),
        )
