# app/errors.py
from __future__ import annotations


class CoreError(Exception):
    """Base error for the financial core. `error_kind` is a stable tag the boundary maps to a status."""

    error_kind = "CORE_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.error_kind)
        self.message = message or self.error_kind


# --- fees (caller bugs, never recovered) ---

class InvalidAmountError(CoreError):
    error_kind = "INVALID_AMOUNT"


class InvalidFeeError(CoreError):
    error_kind = "INVALID_FEE"


# --- phone input (converted into a negative verification result) ---

class PhoneFormatError(CoreError):
    error_kind = "PHONE_FORMAT"


# --- gateway (transient) ---

class GatewayError(CoreError):
    error_kind = "GATEWAY_ERROR"


class GatewayTimeoutError(GatewayError):
    error_kind = "GATEWAY_TIMEOUT"


class GatewayUnavailableError(GatewayError):
    error_kind = "GATEWAY_UNAVAILABLE"


# --- refunds ---

class InvalidRefundRequestError(CoreError):
    error_kind = "INVALID_REFUND_REQUEST"


class RefundNotFoundError(CoreError):
    error_kind = "REFUND_NOT_FOUND"


class InvalidTransition(CoreError):
    error_kind = "INVALID_TRANSITION"
