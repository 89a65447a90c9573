from decimal import Decimal

import pytest

from payments.ledger import find_transaction, log_transaction, refunded_total
from payments.models import Transaction

pytestmark = pytest.mark.django_db


def test_log_transaction_is_idempotent_per_key(booking_factory):
    booking = booking_factory()
    kwargs = {
        "user": booking.renter,
        "booking": booking,
        "kind": Transaction.Kind.RENTAL_CHARGE,
        "stage": Transaction.Stage.RENTAL,
        "amount": Decimal("100.00"),
        "stripe_id": "pi_rental",
        "idempotency_key": f"booking:{booking.id}:rental",
    }

    first = log_transaction(**kwargs)
    second = log_transaction(**{**kwargs, "amount": Decimal("999.00")})

    assert first.pk == second.pk
    assert Transaction.objects.count() == 1
    assert second.amount == Decimal("100.00")
    assert second.currency == "cad"
    assert find_transaction(f"booking:{booking.id}:rental").stripe_id == "pi_rental"
    assert find_transaction("booking:unknown:rental") is None


def test_refunded_total_sums_one_stage(booking_factory):
    booking = booking_factory()
    for index, (stage, amount) in enumerate(
        [
            (Transaction.Stage.RENTAL, "20.00"),
            (Transaction.Stage.RENTAL, "5.50"),
            (Transaction.Stage.UPFRONT, "10.00"),
        ]
    ):
        log_transaction(
            user=booking.renter,
            booking=booking,
            kind=Transaction.Kind.REFUND,
            stage=stage,
            amount=Decimal(amount),
            idempotency_key=f"refund-{index}",
        )

    assert refunded_total(booking, Transaction.Stage.RENTAL) == Decimal("25.50")
    assert refunded_total(booking, Transaction.Stage.UPFRONT) == Decimal("10.00")
