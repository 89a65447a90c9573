from decimal import Decimal
from typing import Optional

from django.contrib.auth import get_user_model
from django.db.models import Sum

from .models import Transaction

User = get_user_model()
TWO_PLACES = Decimal("0.01")


def find_transaction(idempotency_key: str) -> Optional[Transaction]:
    """Return the ledger row recorded under ``idempotency_key``, if any."""
    return Transaction.objects.filter(idempotency_key=idempotency_key).first()


def log_transaction(
    *,
    user: User,
    booking=None,
    kind: str,
    stage: str,
    amount: Decimal,
    idempotency_key: str,
    currency: str = "cad",
    stripe_id: Optional[str] = None,
) -> Transaction:
    """
    Create and return a Transaction row, or the existing row for the same key.

    The unique idempotency key makes replayed payment steps write at most one
    ledger entry.
    """
    transaction, _created = Transaction.objects.get_or_create(
        idempotency_key=idempotency_key,
        defaults={
            "user": user,
            "booking": booking,
            "kind": kind,
            "stage": stage,
            "amount": amount,
            "currency": currency,
            "stripe_id": stripe_id,
        },
    )
    return transaction


def declined_attempts(booking_id, stage: str) -> int:
    """Number of declined charge attempts recorded for a booking stage."""
    return Transaction.objects.filter(
        kind=Transaction.Kind.DECLINE,
        stage=stage,
        idempotency_key__startswith=f"booking:{booking_id}:{stage}",
    ).count()


def refunded_total(booking, stage: str) -> Decimal:
    """Sum of refunds already issued for a booking stage."""
    total = Transaction.objects.filter(
        booking=booking,
        kind=Transaction.Kind.REFUND,
        stage=stage,
    ).aggregate(total=Sum("amount"))["total"]
    return (total or Decimal("0")).quantize(TWO_PLACES)
