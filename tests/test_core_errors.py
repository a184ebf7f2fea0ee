# tests/test_core_errors.py
import pytest
from fastapi import HTTPException

from app.errors import (
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidRefundRequestError,
    InvalidTransition,
    RefundNotFoundError,
)
from services.core_errors import error_kind, raise_http_from_core_error


@pytest.mark.parametrize(
    "exc, status",
    [
        (InvalidAmountError("bad"), 422),
        (RefundNotFoundError("x"), 404),
        (InvalidTransition("x"), 409),
        (GatewayTimeoutError("x"), 504),
        (GatewayUnavailableError("x"), 503),
    ],
)
def test_core_errors_map_to_status(exc, status):
    with pytest.raises(HTTPException) as info:
        raise_http_from_core_error(exc)
    assert info.value.status_code == status


def test_refund_request_error_shows_its_message():
    with pytest.raises(HTTPException) as info:
        raise_http_from_core_error(InvalidRefundRequestError("Only completed transactions can be refunded"))
    assert info.value.status_code == 400
    assert info.value.detail == "Only completed transactions can be refunded"


def test_unknown_error_fails_closed():
    with pytest.raises(HTTPException) as info:
        raise_http_from_core_error(Exception("SOME_RANDOM_BLOWUP_123"))
    assert info.value.status_code == 500
    assert info.value.detail == "Internal server error"
    assert "SOME_RANDOM_BLOWUP_123" not in str(info.value.detail)


def test_error_kind():
    assert error_kind(GatewayTimeoutError("x")) == "GATEWAY_TIMEOUT"
    assert error_kind(ValueError("x")) is None
