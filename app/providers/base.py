

# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Literal

RefundGatewayStatus = Literal["PENDING", "COMPLETED", "FAILED"]


@dataclass(frozen=True)
class VerificationReply:
    success: bool
    account_name: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RefundInitiation:
    accepted: bool
    external_reference: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RefundStatusReply:
    status: RefundGatewayStatus
    failure_reason: Optional[str] = None
    response: Optional[dict[str, Any]] = None

    @property
    def terminal(self) -> bool:
        return self.status in ("COMPLETED", "FAILED")


class GatewayClient(Protocol):
    """
    Payment/mobile-money gateway contract.

    Transient failures raise GatewayTimeoutError / GatewayUnavailableError;
    definitive answers (declined, unknown subscriber) come back as values.

    initiate_refund must treat a repeated refund_reference as the same refund.
    """

    def verify_mobile_money(self, normalized_phone: str, *, timeout_s: float | None = None) -> VerificationReply: ...
    def initiate_refund(
        self, gateway_reference: str, amount: int, reason: str, *, refund_reference: str | None = None
    ) -> RefundInitiation: ...
    def query_refund_status(self, external_reference: str) -> RefundStatusReply: ...
