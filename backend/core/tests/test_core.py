import pytest
from rest_framework import exceptions
from rest_framework.test import APIRequestFactory

from bookings.exceptions import BookingConflict, RateLimited
from core.exceptions import api_exception_handler


def _context():
    return {"request": APIRequestFactory().get("/"), "view": None}


@pytest.mark.django_db
def test_healthz(api_client):
    resp = api_client.get("/api/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": True}


def test_domain_error_keeps_its_kind():
    response = api_exception_handler(BookingConflict(), _context())

    assert response.status_code == 409
    assert response.data["code"] == "Conflict"
    assert "detail" in response.data


def test_drf_errors_are_coded_by_status():
    not_found = api_exception_handler(exceptions.NotFound(), _context())
    invalid = api_exception_handler(exceptions.ValidationError(["bad"]), _context())

    assert not_found.data["code"] == "NotFound"
    assert invalid.status_code == 400
    assert invalid.data == {"detail": ["bad"], "code": "ValidationFailed"}


def test_throttled_maps_to_rate_limited():
    response = api_exception_handler(exceptions.Throttled(wait=30), _context())

    assert response.status_code == 429
    assert response.data["code"] == "RateLimited"
    assert response["Retry-After"] == "30"


def test_rate_limited_error():
    exc = RateLimited("slow down")
    exc.wait = 12

    response = api_exception_handler(exc, _context())

    assert response.status_code == 429
    assert response.data == {"detail": "slow down", "code": "RateLimited"}
    assert response["Retry-After"] == "12"


def test_unhandled_exceptions_fall_through():
    assert api_exception_handler(ValueError("boom"), _context()) is None
