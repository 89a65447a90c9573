"""DRF exception handler that attaches a stable error code to every response."""

from __future__ import annotations

from rest_framework import exceptions
from rest_framework.views import exception_handler

_CODE_BY_STATUS = {
    400: "ValidationFailed",
    401: "Unauthenticated",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    429: "RateLimited",
}


def api_exception_handler(exc, context):
    """
    Render errors as ``{"detail": ..., "code": ...}``.

    Booking domain errors already carry their code; DRF's own exceptions are
    mapped from the HTTP status so clients can branch on one field.
    """
    response = exception_handler(exc, context)
    if response is None:
        return None

    data = response.data
    code = getattr(exc, "error_kind", None)
    if code is None:
        code = _CODE_BY_STATUS.get(response.status_code, "Error")
    if isinstance(exc, exceptions.Throttled):
        code = "RateLimited"

    if isinstance(data, dict):
        data.setdefault("code", code)
    else:
        response.data = {"detail": data, "code": code}
    return response
