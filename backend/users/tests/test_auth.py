import pytest
from django.contrib.auth import get_user_model

pytestmark = pytest.mark.django_db

User = get_user_model()


@pytest.fixture
def user():
    return User.objects.create_user(
        username="demo",
        email="demo@example.com",
        password="Secret123!",
        stripe_customer_id="cus_demo",
    )


def test_token_obtain_and_refresh(api_client, user):
    resp = api_client.post(
        "/api/users/token/",
        {"username": "demo", "password": "Secret123!"},
        format="json",
    )

    assert resp.status_code == 200
    assert {"access", "refresh"} <= set(resp.data)

    refreshed = api_client.post(
        "/api/users/token/refresh/",
        {"refresh": resp.data["refresh"]},
        format="json",
    )
    assert refreshed.status_code == 200
    assert "access" in refreshed.data


def test_wrong_password_is_rejected(api_client, user):
    resp = api_client.post(
        "/api/users/token/",
        {"username": "demo", "password": "nope"},
        format="json",
    )

    assert resp.status_code == 401
    assert resp.data["code"]


def test_user_defaults(user):
    assert user.can_rent and user.can_list
    assert user.loyalty_tier == User.LoyaltyTier.BRONZE
    assert not user.email_verified
