"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.db.models import Q
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.generics import get_object_or_404
from rest_framework.response import Response

from listings.models import Listing

from .availability import blocked_ranges
from .exceptions import NotFound, ValidationFailed
from .fees import loyalty_fee_reduction
from .filters import BookingFilter
from .lifecycle import (
    assert_can_edit_fields,
    create_booking,
    transition_booking,
    update_booking_details,
)
from .models import Booking
from .pricing import compute_price
from .serializers import (
    BookingCreateSerializer,
    BookingDetailSerializer,
    BookingQuoteSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
)
from .state_machine import actor_role
from .throttling import BookingUpdateRateThrottle, raise_rate_limited

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


def _parse_limit(raw) -> int:
    if raw in (None, ""):
        return DEFAULT_LIST_LIMIT
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed("limit must be a positive integer.")
    if value <= 0:
        raise ValidationFailed("limit must be a positive integer.")
    return min(value, MAX_LIST_LIMIT)


def _bookable_listing(listing_id) -> Listing:
    listing = Listing.objects.select_related("owner").filter(pk=listing_id).first()
    if listing is None or not listing.is_bookable:
        raise NotFound("Listing not found.")
    return listing


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to users tied to the booking."""

    def has_permission(self, request, view) -> bool:
        """Always allow; actual checks happen at object level."""
        return True

    def has_object_permission(self, request, view, obj: Booking) -> bool:
        """Check that the user is the booking owner or renter."""
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.owner_id, obj.renter_id)


class BookingViewSet(viewsets.ModelViewSet):
    """Booking requests, owner decisions and the rental lifecycle."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)
    filterset_class = BookingFilter
    pagination_class = None
    http_method_names = ["get", "post", "patch", "head", "options"]

    def get_queryset(self):
        """Restrict bookings to the authenticated participant."""
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()
        return (
            Booking.objects.select_related("listing", "owner", "renter")
            .filter(Q(owner=user) | Q(renter=user))
            .order_by("-created_at")
        )

    def get_object(self):
        """Fetch a single booking and enforce participant permissions."""
        obj = get_object_or_404(
            Booking.objects.select_related("listing", "listing__owner", "owner", "renter"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def get_throttles(self):
        throttles = super().get_throttles()
        if self.action in ("update", "partial_update"):
            throttles.append(BookingUpdateRateThrottle())
        return throttles

    def throttled(self, request, wait):
        raise_rate_limited(wait)

    def list(self, request, *args, **kwargs):
        limit = _parse_limit(request.query_params.get("limit"))
        queryset = self.filter_queryset(self.get_queryset())[:limit]
        serializer = self.get_serializer(queryset, many=True)
        return Response(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = BookingDetailSerializer(booking, context=self.get_serializer_context())
        return Response(serializer.data)

    def create(self, request, *args, **kwargs):
        """Create a booking request and pay its upfront stage."""
        payload = BookingCreateSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        result = create_booking(
            listing_id=data["listing"],
            renter=request.user,
            start_date=data["start_date"],
            end_date=data["end_date"],
            delivery_method=data["delivery_method"],
            guarantee_tier=data["guarantee_tier"],
            pickup_location=data["pickup_location"],
            notes=data["notes"],
            payment_method_id=data["stripe_payment_method_id"],
            customer_id=data["stripe_customer_id"],
            upfront_payment_intent_id=data["upfront_payment_intent_id"],
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        if not result.created:
            logger.info(
                "bookings: create replayed for booking %s",
                result.booking.id,
                extra={"renter_id": request.user.id},
            )
        serializer = self.get_serializer(result.booking)
        response_status = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
        return Response(serializer.data, status=response_status)

    def partial_update(self, request, *args, **kwargs):
        """Change status and/or notes. Role rules are checked per field."""
        booking = self.get_object()
        payload = BookingUpdateSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        changes = payload.detail_changes()

        if changes:
            assert_can_edit_fields(actor_role(booking, request.user.id), changes)

        if "status" in data:
            booking = transition_booking(
                booking_id=booking.pk,
                actor=request.user,
                target_status=data["status"],
                expected_status=data.get("expected_status"),
                reason=data.get("reason", ""),
            )
        if changes:
            booking = update_booking_details(
                booking_id=booking.pk,
                actor=request.user,
                changes=changes,
            )

        booking = self.get_queryset().get(pk=booking.pk)
        serializer = BookingDetailSerializer(booking, context=self.get_serializer_context())
        return Response(serializer.data, status=status.HTTP_200_OK)

    @action(
        detail=False,
        methods=["post"],
        url_path="quote",
        permission_classes=[permissions.AllowAny],
    )
    def quote(self, request, *args, **kwargs):
        """Preview the price of a booking without creating it."""
        payload = BookingQuoteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        listing = _bookable_listing(data["listing"])
        price = compute_price(
            daily_rate=listing.daily_price,
            start_date=data["start_date"],
            end_date=data["end_date"],
            delivery_method=data["delivery_method"],
            delivery_fee=listing.delivery_fee,
            guarantee_tier=data["guarantee_tier"],
            gear_value=listing.gear_value,
            loyalty_fee_reduction=loyalty_fee_reduction(listing.owner.loyalty_tier),
        )
        body = {"listing": listing.pk, **price.as_dict()}
        return Response(body, status=status.HTTP_200_OK)

    @action(
        detail=False,
        methods=["get"],
        url_path="availability",
        permission_classes=[permissions.AllowAny],
    )
    def availability(self, request, *args, **kwargs):
        """Return inclusive [start, end] ranges held by confirmed or active bookings."""
        listing_param = request.query_params.get("listing")
        if not listing_param:
            raise ValidationFailed("listing query parameter is required.")
        try:
            listing_id = int(listing_param)
        except (TypeError, ValueError):
            raise ValidationFailed("listing must be a valid integer.")

        listing = _bookable_listing(listing_id)
        return Response(blocked_ranges(listing.pk), status=status.HTTP_200_OK)
