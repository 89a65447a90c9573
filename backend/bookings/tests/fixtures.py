"""Shared fixtures for bookings tests."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache

from bookings.models import Booking
from listings.models import Listing
from payments import coordinator as coordinator_module
from payments.coordinator import PaymentStageCoordinator
from payments.gateway import StripePaymentError, StripeTransientError, to_cents

User = get_user_model()

# Sentinel for a call that reaches Stripe but whose response is lost.
LOST_RESPONSE = "lost-response"


class FakeGateway:
    """In-memory stand-in for StripeGateway that honours idempotency keys."""

    currency = "cad"

    def __init__(self):
        self.calls: list[tuple[str, str, Decimal]] = []
        self.failures: dict[str, list] = {}
        self.intents: dict[str, SimpleNamespace] = {}
        self.refunds: dict[str, SimpleNamespace] = {}
        self.intent_status = "succeeded"
        self.declines: dict[str, Exception] = {}

    def fail(self, method: str, *errors) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _next_failure(self, method: str):
        queue = self.failures.get(method) or []
        return queue.pop(0) if queue else None

    def _create_intent(self, method, *, amount, idempotency_key, **kwargs):
        self.calls.append((method, idempotency_key, Decimal(amount)))
        # Stripe answers a reused key with the stored decline.
        if idempotency_key in self.declines:
            raise self.declines[idempotency_key]
        failure = self._next_failure(method)
        if failure is not None and failure != LOST_RESPONSE:
            if isinstance(failure, StripePaymentError):
                self.declines[idempotency_key] = failure
            raise failure
        intent = self.intents.get(idempotency_key)
        if intent is None:
            intent = SimpleNamespace(
                id=f"pi_{len(self.intents) + 1}",
                status=self.intent_status,
                amount=to_cents(amount),
                metadata={"idempotency_key": idempotency_key},
            )
            self.intents[idempotency_key] = intent
        if failure == LOST_RESPONSE:
            raise StripeTransientError("Temporary Stripe error, please retry.")
        return intent

    def authorize(self, **kwargs):
        return self._create_intent("authorize", **kwargs)

    def charge(self, **kwargs):
        return self._create_intent("charge", **kwargs)

    def refund(self, *, payment_id, amount, idempotency_key, metadata=None):
        self.calls.append(("refund", idempotency_key, Decimal(amount)))
        failure = self._next_failure("refund")
        if failure is not None and failure != LOST_RESPONSE:
            raise failure
        refund = self.refunds.get(idempotency_key)
        if refund is None:
            refund = SimpleNamespace(
                id=f"re_{len(self.refunds) + 1}",
                status="succeeded",
                amount=to_cents(amount),
                payment_intent=payment_id,
                metadata={"idempotency_key": idempotency_key},
            )
            self.refunds[idempotency_key] = refund
        if failure == LOST_RESPONSE:
            raise StripeTransientError("Temporary Stripe error, please retry.")
        return refund

    def retrieve(self, payment_id):
        for intent in self.intents.values():
            if intent.id == payment_id:
                return intent
        raise StripePaymentError("No such payment_intent.")

    def find_by_idempotency_key(self, idempotency_key):
        return self.intents.get(idempotency_key)

    def find_refund(self, payment_id, idempotency_key):
        refund = self.refunds.get(idempotency_key)
        if refund is not None and refund.payment_intent == payment_id:
            return refund
        return None

    def count(self, method: str) -> int:
        return sum(1 for name, _key, _amount in self.calls if name == method)


@pytest.fixture(autouse=True)
def _clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def fake_gateway(monkeypatch) -> FakeGateway:
    """Every coordinator built without an explicit gateway talks to this fake."""
    gateway = FakeGateway()
    monkeypatch.setattr(coordinator_module, "StripeGateway", lambda: gateway)
    return gateway


@pytest.fixture
def coordinator(fake_gateway) -> PaymentStageCoordinator:
    return PaymentStageCoordinator(gateway=fake_gateway)


def _create_user(*, username: str, can_list: bool, can_rent: bool, **extra) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        can_list=can_list,
        can_rent=can_rent,
        email_verified=True,
        **extra,
    )


@pytest.fixture
def owner_user():
    return _create_user(username="owner", can_list=True, can_rent=True)


@pytest.fixture
def renter_user():
    return _create_user(
        username="renter",
        can_list=False,
        can_rent=True,
        stripe_customer_id="cus_renter",
    )


@pytest.fixture
def other_user():
    return _create_user(username="other", can_list=True, can_rent=True)


@pytest.fixture
def listing(owner_user):
    return Listing.objects.create(
        owner=owner_user,
        title="Pro Camera Kit",
        description="Mirrorless camera with two lenses.",
        daily_price=Decimal("50.00"),
        gear_value=Decimal("1000.00"),
        delivery_fee=Decimal("20.00"),
        status=Listing.Status.ACTIVE,
        location="Edmonton",
        cancellation_policy=Listing.CancellationPolicy.FLEXIBLE,
    )


@pytest.fixture
def future_dates() -> Callable[[int, int], tuple[date, date]]:
    def _dates(offset: int = 5, length: int = 2) -> tuple[date, date]:
        start = date.today() + timedelta(days=offset)
        return start, start + timedelta(days=length)

    return _dates


@pytest.fixture
def booking_factory(listing, renter_user) -> Callable[..., Booking]:
    """
    Create bookings directly with whole-unit amounts: 50/day rent and a
    5/day service fee, the fee being the upfront stage.
    """

    def _create_booking(
        *,
        listing_override: Listing | None = None,
        owner=None,
        renter=None,
        start_date: date | None = None,
        end_date: date | None = None,
        status=Booking.Status.PENDING_OWNER_APPROVAL,
        **extra_fields,
    ) -> Booking:
        selected_listing = listing_override or listing
        start_date = start_date or date.today() + timedelta(days=5)
        end_date = end_date or start_date + timedelta(days=2)
        days = max(1, (end_date - start_date).days)
        subtotal = Decimal(50 * days)
        service_fee = Decimal(5 * days)
        fields = {
            "days": days,
            "daily_price": Decimal("50.00"),
            "subtotal": subtotal,
            "service_fee": service_fee,
            "total_price": subtotal + service_fee,
            "upfront_amount": service_fee,
            "rental_amount": subtotal,
            "payment_status": Booking.PaymentStatus.PAID,
            "upfront_payment_id": f"pi_upfront_{uuid.uuid4().hex[:12]}",
            "idempotency_key": uuid.uuid4().hex,
            "cancellation_policy": selected_listing.cancellation_policy,
        }
        if status in (Booking.Status.CONFIRMED, Booking.Status.ACTIVE, Booking.Status.COMPLETED):
            fields["payment_stage"] = Booking.PaymentStage.RENTAL
            fields["rental_payment_id"] = f"pi_rental_{uuid.uuid4().hex[:12]}"
        fields.update(extra_fields)
        return Booking.objects.create(
            listing=selected_listing,
            owner=owner or selected_listing.owner,
            renter=renter or renter_user,
            start_date=start_date,
            end_date=end_date,
            status=status,
            **fields,
        )

    return _create_booking
