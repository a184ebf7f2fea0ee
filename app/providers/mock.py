

# app/providers/mock.py
from __future__ import annotations

import threading
import time
import uuid
from typing import Optional

from app.errors import GatewayTimeoutError, GatewayUnavailableError
from app.providers.base import RefundInitiation, RefundStatusReply, VerificationReply


class MockGateway:
    """
    Test/dev gateway.

    verify_mode: "success" | "not_found" | "timeout" | "unavailable" | "slow"
    refund_mode: "accept" | "decline" | "timeout" | "unavailable"
    refund_status: what query_refund_status answers ("PENDING" | "COMPLETED" | "FAILED")

    `transient_failures` makes the first N initiate_refund calls raise before refund_mode applies.
    An accepted refund_reference always maps back to the same external reference.
    """

    def __init__(
        self,
        *,
        verify_mode: str = "success",
        account_name: Optional[str] = "Awa Diop",
        refund_mode: str = "accept",
        refund_status: str = "PENDING",
        transient_failures: int = 0,
        slow_seconds: float = 0.5,
    ):
        self.verify_mode = verify_mode
        self.account_name = account_name
        self.refund_mode = refund_mode
        self.refund_status = refund_status
        self.transient_failures = transient_failures
        self.slow_seconds = slow_seconds

        self._lock = threading.Lock()
        self.verify_calls: list[dict] = []
        self.refund_calls: list[dict] = []
        self.status_calls: list[str] = []
        self._accepted: dict[str, str] = {}

    def verify_mobile_money(self, normalized_phone: str, *, timeout_s: float | None = None) -> VerificationReply:
        with self._lock:
            self.verify_calls.append({"phone": normalized_phone, "timeout_s": timeout_s})

        if self.verify_mode == "timeout":
            raise GatewayTimeoutError("Gateway timeout")
        if self.verify_mode == "unavailable":
            raise GatewayUnavailableError("Gateway unavailable")
        if self.verify_mode == "slow":
            time.sleep(self.slow_seconds)
        if self.verify_mode == "not_found":
            return VerificationReply(success=False, response={"mock": True}, error="Subscriber not found")
        return VerificationReply(success=True, account_name=self.account_name, response={"mock": True})

    def initiate_refund(
        self, gateway_reference: str, amount: int, reason: str, *, refund_reference: str | None = None
    ) -> RefundInitiation:
        with self._lock:
            self.refund_calls.append(
                {
                    "gateway_reference": gateway_reference,
                    "amount": amount,
                    "reason": reason,
                    "refund_reference": refund_reference,
                }
            )
            attempt = len(self.refund_calls)

        if attempt <= self.transient_failures or self.refund_mode == "timeout":
            raise GatewayTimeoutError("Gateway timeout")
        if self.refund_mode == "unavailable":
            raise GatewayUnavailableError("Gateway unavailable")
        if self.refund_mode == "decline":
            return RefundInitiation(accepted=False, response={"mock": True}, error="Refund declined by gateway")
        with self._lock:
            if refund_reference and refund_reference in self._accepted:
                external_reference = self._accepted[refund_reference]
            else:
                external_reference = f"mock-rf-{uuid.uuid4().hex[:12]}"
                if refund_reference:
                    self._accepted[refund_reference] = external_reference
        return RefundInitiation(accepted=True, external_reference=external_reference, response={"mock": True})

    def query_refund_status(self, external_reference: str) -> RefundStatusReply:
        with self._lock:
            self.status_calls.append(external_reference)

        if self.refund_status == "unavailable":
            raise GatewayUnavailableError("Gateway unavailable")
        if self.refund_status == "FAILED":
            return RefundStatusReply(status="FAILED", failure_reason="Insufficient merchant balance", response={"mock": True})
        if self.refund_status == "COMPLETED":
            return RefundStatusReply(status="COMPLETED", response={"mock": True})
        return RefundStatusReply(status="PENDING", response={"mock": True})
