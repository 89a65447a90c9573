from rest_framework import serializers

from .models import Listing


class ListingSerializer(serializers.ModelSerializer):
    """Read-only listing snapshot embedded in booking payloads."""

    owner = serializers.PrimaryKeyRelatedField(read_only=True)
    owner_username = serializers.ReadOnlyField(source="owner.username")

    class Meta:
        model = Listing
        fields = [
            "id",
            "owner",
            "owner_username",
            "title",
            "description",
            "daily_price",
            "gear_value",
            "delivery_fee",
            "status",
            "location",
            "cancellation_policy",
            "created_at",
        ]
        read_only_fields = fields
