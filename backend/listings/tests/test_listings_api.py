from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from rest_framework.test import APIClient

from listings.models import Listing

pytestmark = pytest.mark.django_db


def auth(user):
    client = APIClient()
    token_resp = client.post(
        "/api/users/token/",
        {"username": user.username, "password": "testpass"},
        format="json",
    )
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_resp.data['access']}")
    return client


@pytest.fixture
def draft_listing(owner_user):
    return Listing.objects.create(
        owner=owner_user,
        title="Kayak",
        daily_price=Decimal("30.00"),
        status=Listing.Status.DRAFT,
    )


def test_list_only_shows_active_listings(api_client, listing, draft_listing):
    resp = api_client.get("/api/listings/")

    assert resp.status_code == 200
    ids = [item["id"] for item in resp.data["results"]]
    assert ids == [listing.id]


def test_search_filters(api_client, listing, other_user):
    Listing.objects.create(
        owner=other_user,
        title="Camping tent",
        daily_price=Decimal("15.00"),
        status=Listing.Status.ACTIVE,
        location="Calgary",
    )

    by_text = api_client.get("/api/listings/?q=camera")
    by_price = api_client.get("/api/listings/?price_max=20")
    by_location = api_client.get("/api/listings/?location=edmonton")

    assert [item["title"] for item in by_text.data["results"]] == ["Pro Camera Kit"]
    assert [item["title"] for item in by_price.data["results"]] == ["Camping tent"]
    assert [item["id"] for item in by_location.data["results"]] == [listing.id]


def test_retrieve_snapshot_fields(api_client, listing):
    resp = api_client.get(f"/api/listings/{listing.id}/")

    assert resp.status_code == 200
    assert resp.data["owner_username"] == "owner"
    assert resp.data["daily_price"] == "50.00"
    assert resp.data["gear_value"] == "1000.00"
    assert resp.data["cancellation_policy"] == "flexible"


def test_draft_visible_to_owner_only(api_client, owner_user, draft_listing):
    assert api_client.get(f"/api/listings/{draft_listing.id}/").status_code == 404
    assert auth(owner_user).get(f"/api/listings/{draft_listing.id}/").status_code == 200


def test_listings_are_read_only(owner_user, listing):
    client = auth(owner_user)

    resp = client.post("/api/listings/", {"title": "New"}, format="json")

    assert resp.status_code == 405


def test_clean_rejects_short_title(owner_user):
    listing = Listing(owner=owner_user, title="ab", daily_price=Decimal("10"))

    with pytest.raises(ValidationError):
        listing.clean()
