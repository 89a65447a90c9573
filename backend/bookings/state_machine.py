"""Role-gated booking status transitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .exceptions import Forbidden, InvalidStateTransition
from .models import Booking

Role = Literal["owner", "renter"]
OWNER: Role = "owner"
RENTER: Role = "renter"

Status = Booking.Status

# (from, to) -> roles allowed to request the edge.
TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (Status.PENDING_OWNER_APPROVAL, Status.CONFIRMED): frozenset({OWNER}),
    (Status.PENDING_OWNER_APPROVAL, Status.REJECTED): frozenset({OWNER}),
    (Status.PENDING_OWNER_APPROVAL, Status.CANCELLED): frozenset({RENTER}),
    (Status.CONFIRMED, Status.CANCELLED): frozenset({RENTER}),
    (Status.CONFIRMED, Status.ACTIVE): frozenset({OWNER, RENTER}),
    (Status.ACTIVE, Status.COMPLETED): frozenset({OWNER, RENTER}),
}


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    error: Optional[type[Exception]] = None
    reason: str = ""


def actor_role(booking: Booking, user_id: Optional[int]) -> Optional[Role]:
    """Return the caller's role on the booking, or None for non-parties."""
    if user_id is None:
        return None
    if booking.owner_id == user_id:
        return OWNER
    if booking.renter_id == user_id:
        return RENTER
    return None


def is_terminal(status: str) -> bool:
    return status in Booking.TERMINAL_STATUSES


def check_transition(current: str, target: str, role: Optional[str]) -> TransitionDecision:
    """
    Decide whether ``role`` may move a booking from ``current`` to ``target``.

    A known edge requested by the wrong party is Forbidden. A target the
    role may request from some other status means the caller saw a stale
    status, which is reported as InvalidStateTransition. Anything else is
    Forbidden.
    """
    if role is None:
        return TransitionDecision(
            False, Forbidden, "Only the owner or renter can change this booking."
        )

    allowed_roles = TRANSITIONS.get((current, target))
    if allowed_roles is not None:
        if role in allowed_roles:
            return TransitionDecision(True)
        return TransitionDecision(
            False,
            Forbidden,
            f"The {role} cannot move a booking from {current} to {target}.",
        )

    if role_may_request(target, role):
        return TransitionDecision(
            False,
            InvalidStateTransition,
            f"Booking is {current}; it cannot move to {target}.",
        )
    return TransitionDecision(False, Forbidden, f"Transition to {target} is not allowed.")


def apply_transition(current: str, target: str, role: Optional[str]) -> None:
    """Raise the mapped booking error when the transition is not allowed."""
    decision = check_transition(current, target, role)
    if not decision.allowed:
        raise decision.error(decision.reason)


def role_may_request(target: str, role: Optional[str]) -> bool:
    """True when ``role`` is allowed to request ``target`` from some status."""
    return any(to == target and role in roles for (_from, to), roles in TRANSITIONS.items())


def available_transitions(current: str, role: Optional[str]) -> list[str]:
    if role is None:
        return []
    return [to for (from_, to), roles in TRANSITIONS.items() if from_ == current and role in roles]
