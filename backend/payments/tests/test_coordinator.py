from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from bookings.exceptions import InternalError, PaymentDeclined, PaymentFailed
from bookings.models import Booking
from bookings.tests.fixtures import LOST_RESPONSE
from payments.coordinator import refund_key, stage_key
from payments.gateway import StripeConfigurationError, StripePaymentError, StripeTransientError
from payments.ledger import log_transaction
from payments.models import Transaction

pytestmark = pytest.mark.django_db


def test_stage_keys():
    assert stage_key("b1", "upfront") == "booking:b1:upfront"
    assert stage_key("b1", "rental") == "booking:b1:rental"
    assert stage_key("b1", "rental", 2) == "booking:b1:rental:2"
    assert refund_key("b1", "pi_9", Decimal("12.50")) == "booking:b1:refund:pi_9:1250"


def test_capture_rental_charges_once(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()

    first = coordinator.capture_rental(booking, booking.rental_amount)
    booking.rental_payment_id = ""
    second = coordinator.capture_rental(booking, booking.rental_amount)

    assert first == second == "pi_1"
    assert booking.rental_payment_id == "pi_1"
    assert fake_gateway.count("charge") == 1
    tx = Transaction.objects.get(kind=Transaction.Kind.RENTAL_CHARGE)
    assert tx.idempotency_key == stage_key(booking.id, "rental")
    assert tx.amount == Decimal("100.00")
    assert tx.currency == "cad"


def test_capture_rental_skips_zero_amount(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()

    assert coordinator.capture_rental(booking, Decimal("0")) == ""
    assert fake_gateway.calls == []


def test_lost_charge_response_is_found_by_key(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.fail("charge", LOST_RESPONSE)

    payment_id = coordinator.capture_rental(booking, booking.rental_amount)

    assert payment_id == "pi_1"
    assert fake_gateway.count("charge") == 1
    assert Transaction.objects.filter(kind=Transaction.Kind.RENTAL_CHARGE).count() == 1


def test_charge_retried_once_with_same_key(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.fail("charge", StripeTransientError("timeout"))

    payment_id = coordinator.capture_rental(booking, booking.rental_amount)

    assert payment_id == "pi_1"
    keys = {key for name, key, _amount in fake_gateway.calls if name == "charge"}
    assert keys == {stage_key(booking.id, "rental")}
    assert fake_gateway.count("charge") == 2


def test_provider_unreachable_is_a_payment_failure(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.fail("charge", StripeTransientError("timeout"), StripeTransientError("timeout"))

    with pytest.raises(PaymentFailed):
        coordinator.capture_rental(booking, booking.rental_amount)

    assert booking.rental_payment_id == ""
    assert not Transaction.objects.exists()


def test_misconfigured_stripe_is_internal_error(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.fail("charge", StripeConfigurationError("no key"))

    with pytest.raises(InternalError):
        coordinator.capture_rental(booking, booking.rental_amount)


def test_incomplete_intent_is_a_payment_failure(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.intent_status = "requires_action"

    with pytest.raises(PaymentFailed):
        coordinator.capture_rental(booking, booking.rental_amount)


def test_ledger_payment_id_conflict(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    log_transaction(
        user=booking.renter,
        booking=booking,
        kind=Transaction.Kind.RENTAL_CHARGE,
        stage=Transaction.Stage.RENTAL,
        amount=booking.rental_amount,
        stripe_id="pi_recorded",
        idempotency_key=stage_key(booking.id, "rental"),
    )
    booking.rental_payment_id = "pi_something_else"

    with pytest.raises(PaymentFailed):
        coordinator.capture_rental(booking, booking.rental_amount)
    assert fake_gateway.calls == []


def test_refund_is_idempotent(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()

    first = coordinator.refund(
        booking, booking.upfront_payment_id, Decimal("10.00"), stage=Transaction.Stage.UPFRONT
    )
    second = coordinator.refund(
        booking, booking.upfront_payment_id, Decimal("10.00"), stage=Transaction.Stage.UPFRONT
    )

    assert first == second == "re_1"
    assert fake_gateway.count("refund") == 1
    assert Transaction.objects.filter(kind=Transaction.Kind.REFUND).count() == 1


def test_settle_pending_booking_refunds_upfront(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()

    records = coordinator.settle_cancellation(booking, "renter")

    assert [(r.stage, r.amount) for r in records] == [("upfront", Decimal("10"))]
    assert booking.payment_status == Booking.PaymentStatus.REFUNDED


def test_owner_cancellation_refunds_everything(coordinator, booking_factory, fake_gateway):
    booking = booking_factory(status=Booking.Status.CONFIRMED)

    records = coordinator.settle_cancellation(booking, "owner")

    assert {str(r.stage): r.amount for r in records} == {
        "upfront": Decimal("10"),
        "rental": Decimal("100"),
    }


def test_strict_policy_late_cancellation_refunds_nothing(
    coordinator, booking_factory, fake_gateway
):
    start = date.today() + timedelta(days=2)
    booking = booking_factory(
        start_date=start,
        end_date=start + timedelta(days=1),
        status=Booking.Status.CONFIRMED,
        cancellation_policy="strict",
    )

    records = coordinator.settle_cancellation(booking, "renter")

    assert records == []
    assert booking.payment_status == Booking.PaymentStatus.PAID
    assert fake_gateway.calls == []


def test_link_upfront_rejects_reused_intent(coordinator, booking_factory, fake_gateway):
    existing = booking_factory()
    fake_gateway.intents["client"] = SimpleNamespace(
        id=existing.upfront_payment_id, status="succeeded", amount=1000, metadata={}
    )
    new_booking = Booking(id=uuid.UUID(int=1), upfront_payment_id="")

    with pytest.raises(PaymentFailed):
        coordinator.link_upfront(new_booking, existing.upfront_payment_id, Decimal("10.00"))


def test_void_upfront_refunds_without_ledger_row(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()

    refund_id = coordinator.void_upfront(booking, Decimal("10.00"))

    assert refund_id == "re_1"
    assert fake_gateway.count("refund") == 1
    assert not Transaction.objects.exists()


def test_recorded_decline_moves_the_charge_key(coordinator, booking_factory, fake_gateway):
    booking = booking_factory()
    fake_gateway.fail("charge", StripePaymentError("Your card was declined."))

    with pytest.raises(PaymentDeclined):
        coordinator.capture_rental(booking, booking.rental_amount)
    with pytest.raises(PaymentDeclined):
        coordinator.capture_rental(booking, booking.rental_amount)

    coordinator.record_decline(booking, Transaction.Stage.RENTAL, booking.rental_amount)
    payment_id = coordinator.capture_rental(booking, booking.rental_amount)

    assert payment_id == "pi_1"
    assert [key for _name, key, _amount in fake_gateway.calls] == [
        stage_key(booking.id, "rental"),
        stage_key(booking.id, "rental"),
        stage_key(booking.id, "rental", 1),
    ]
    assert coordinator.attempt_key(booking, Transaction.Stage.RENTAL) == stage_key(
        booking.id, "rental", 1
    )
    tx = Transaction.objects.get(kind=Transaction.Kind.RENTAL_CHARGE)
    assert tx.idempotency_key == stage_key(booking.id, "rental", 1)


def test_pending_cancellation_skips_already_refunded_upfront(
    coordinator, booking_factory, fake_gateway
):
    booking = booking_factory()
    log_transaction(
        user=booking.renter,
        booking=booking,
        kind=Transaction.Kind.REFUND,
        stage=Transaction.Stage.UPFRONT,
        amount=Decimal("4.00"),
        stripe_id="re_earlier",
        idempotency_key=f"booking:{booking.id}:refund:earlier",
    )

    records = coordinator.settle_cancellation(booking, "renter")

    assert [(r.stage, r.amount) for r in records] == [("upfront", Decimal("6.00"))]
    assert fake_gateway.calls == [
        ("refund", refund_key(booking.id, booking.upfront_payment_id, Decimal("6")), Decimal("6"))
    ]


def test_fully_refunded_stage_is_not_refunded_again(coordinator, booking_factory, fake_gateway):
    booking = booking_factory(status=Booking.Status.CONFIRMED)
    coordinator.settle_cancellation(booking, "owner")

    records = coordinator.settle_cancellation(booking, "owner")

    assert records == []
    assert fake_gateway.count("refund") == 2
