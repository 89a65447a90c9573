"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from listings.serializers import ListingSerializer

from .models import Booking, BookingEvent
from .state_machine import actor_role, available_transitions


class BookingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingEvent
        fields = ("id", "type", "actor", "payload", "created_at")
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """Serialize Booking instances for API usage."""

    booking_id = serializers.UUIDField(source="id", read_only=True)
    listing_title = serializers.ReadOnlyField(source="listing.title")
    owner_username = serializers.ReadOnlyField(source="owner.username")
    renter_username = serializers.ReadOnlyField(source="renter.username")
    viewer_role = serializers.SerializerMethodField()
    available_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = (
            "id",
            "booking_id",
            "status",
            "status_reason",
            "listing",
            "listing_title",
            "owner",
            "owner_username",
            "renter",
            "renter_username",
            "start_date",
            "end_date",
            "days",
            "daily_price",
            "subtotal",
            "service_fee",
            "delivery_fee",
            "guarantee_tier",
            "guarantee_cost",
            "loyalty_fee_reduction",
            "total_price",
            "upfront_amount",
            "rental_amount",
            "payment_stage",
            "payment_status",
            "upfront_payment_id",
            "rental_payment_id",
            "delivery_method",
            "pickup_location",
            "notes",
            "owner_notes",
            "renter_notes",
            "checkout_condition",
            "return_condition",
            "cancellation_policy",
            "viewer_role",
            "available_transitions",
            "confirmed_at",
            "picked_up_at",
            "completed_at",
            "cancelled_at",
            "rejected_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def _viewer_id(self):
        request = self.context.get("request")
        user = getattr(request, "user", None)
        return getattr(user, "id", None)

    def get_viewer_role(self, obj: Booking):
        return actor_role(obj, self._viewer_id())

    def get_available_transitions(self, obj: Booking) -> list[str]:
        return available_transitions(obj.status, actor_role(obj, self._viewer_id()))


class BookingDetailSerializer(BookingSerializer):
    """Booking plus an embedded listing snapshot and its timeline."""

    listing_snapshot = ListingSerializer(source="listing", read_only=True)
    events = BookingEventSerializer(many=True, read_only=True)

    class Meta(BookingSerializer.Meta):
        fields = BookingSerializer.Meta.fields + ("listing_snapshot", "events")
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    listing = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    delivery_method = serializers.ChoiceField(
        choices=Booking.DeliveryMethod.choices,
        default=Booking.DeliveryMethod.PICKUP,
    )
    pickup_location = serializers.CharField(required=False, allow_blank=True, default="")
    guarantee_tier = serializers.ChoiceField(
        choices=Booking.GuaranteeTier.choices,
        default=Booking.GuaranteeTier.NONE,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    stripe_payment_method_id = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        help_text="Stripe PaymentMethod ID used to pay for this booking.",
    )
    stripe_customer_id = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        help_text="Stripe Customer ID the payment method is saved on.",
    )
    upfront_payment_intent_id = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        help_text="PaymentIntent already confirmed client-side for the upfront stage.",
    )


class BookingQuoteSerializer(serializers.Serializer):
    listing = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    delivery_method = serializers.ChoiceField(
        choices=Booking.DeliveryMethod.choices,
        default=Booking.DeliveryMethod.PICKUP,
    )
    guarantee_tier = serializers.ChoiceField(
        choices=Booking.GuaranteeTier.choices,
        default=Booking.GuaranteeTier.NONE,
    )


class BookingUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.Status.choices, required=False)
    expected_status = serializers.ChoiceField(choices=Booking.Status.choices, required=False)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    owner_notes = serializers.CharField(required=False, allow_blank=True)
    renter_notes = serializers.CharField(required=False, allow_blank=True)
    checkout_condition = serializers.CharField(required=False, allow_blank=True)
    return_condition = serializers.CharField(required=False, allow_blank=True)

    DETAIL_FIELDS = ("owner_notes", "renter_notes", "checkout_condition", "return_condition")

    def validate(self, attrs):
        if "status" not in attrs and not any(field in attrs for field in self.DETAIL_FIELDS):
            raise serializers.ValidationError("Provide a status or at least one editable field.")
        return attrs

    def detail_changes(self) -> dict[str, str]:
        return {
            field: self.validated_data[field]
            for field in self.DETAIL_FIELDS
            if field in self.validated_data
        }
