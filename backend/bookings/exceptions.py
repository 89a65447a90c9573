"""Booking engine error taxonomy.

Every error is a DRF ``APIException`` so views can let it propagate; the
project exception handler renders ``{"detail": ..., "code": <kind>}``.
"""

from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException


class BookingError(APIException):
    """Base class for booking engine errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Booking request could not be processed."
    default_code = "booking_error"
    error_kind = "BookingError"


class InvalidDateRange(BookingError):
    default_detail = "End date must be on or after the start date."
    default_code = "invalid_date_range"
    error_kind = "InvalidDateRange"


class ValidationFailed(BookingError):
    default_detail = "Invalid booking input."
    default_code = "validation_failed"
    error_kind = "ValidationFailed"


class InvalidState(BookingError):
    default_detail = "Listing is not available for booking."
    default_code = "invalid_state"
    error_kind = "InvalidState"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"
    error_kind = "NotFound"


class Forbidden(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You do not have permission to perform this action."
    default_code = "forbidden"
    error_kind = "Forbidden"


class BookingConflict(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Requested dates are not available for this listing."
    default_code = "conflict"
    error_kind = "Conflict"


class InvalidStateTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Booking cannot move to the requested status."
    default_code = "invalid_state_transition"
    error_kind = "InvalidStateTransition"


class PaymentFailed(BookingError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = "Payment could not be completed."
    default_code = "payment_failed"
    error_kind = "PaymentFailed"


class PaymentDeclined(PaymentFailed):
    """The provider gave a final answer: the card or intent did not succeed."""


class RateLimited(BookingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests."
    default_code = "rate_limited"
    error_kind = "RateLimited"


class InternalError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Unexpected error while processing the booking. It is safe to retry."
    default_code = "internal_error"
    error_kind = "InternalError"
