# app/providers/gateway.py
from __future__ import annotations

import logging
from typing import Optional

import httpx

from app.errors import GatewayTimeoutError, GatewayUnavailableError
from app.providers.base import RefundInitiation, RefundStatusReply, VerificationReply
from app.providers.config import GatewayConfig, auth_headers, gateway_config
from app.providers.http import HttpClient, HttpResponse, is_retryable_http
from services.redaction import mask_phone

logger = logging.getLogger("mbotamapay")

COMPLETED_STATUSES = {"SUCCESS", "SUCCESSFUL", "CONFIRMED", "COMPLETED", "REFUNDED"}
FAILED_STATUSES = {"FAILED", "CANCELLED", "REJECTED", "DECLINED"}


def _body_message(resp: HttpResponse) -> Optional[str]:
    if isinstance(resp.json, dict):
        return resp.json.get("message") or resp.json.get("error")
    return None


class HttpGatewayClient:
    """
    JSON-over-HTTP gateway client.

      POST {base}/mobile-money/verify   {"phone": "+221..."}
      POST {base}/refunds               {"transaction_reference", "amount", "reason", "client_reference"}
                                        X-Reference-Id: client_reference (idempotency key)
      GET  {base}/refunds/{reference}
    """

    def __init__(self, config: GatewayConfig | None = None, http: Optional[HttpClient] = None):
        self.config = config or gateway_config()
        self.http = http or HttpClient(timeout_s=self.config.timeout_s)

    def _headers(self) -> dict[str, str]:
        headers = auth_headers(self.config.auth_mode, self.config.api_key)
        headers["Content-Type"] = "application/json"
        return headers

    def _url(self, path: str) -> str:
        if not self.config.base_url:
            raise GatewayUnavailableError("GATEWAY_BASE_URL not configured")
        return f"{self.config.base_url}{path}"

    def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        timeout_s: float | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        url = self._url(path)
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)
        try:
            if method == "POST":
                resp = self.http.post(url, headers=headers, json_body=json_body, timeout_s=timeout_s)
            else:
                resp = self.http.get(url, headers=headers, timeout_s=timeout_s)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Gateway timeout: {method} {path}") from e
        except httpx.HTTPError as e:
            raise GatewayUnavailableError(f"Gateway error: {e}") from e

        if is_retryable_http(resp.status_code):
            raise GatewayUnavailableError(_body_message(resp) or f"HTTP {resp.status_code}")
        return resp

    def verify_mobile_money(self, normalized_phone: str, *, timeout_s: float | None = None) -> VerificationReply:
        resp = self._call("POST", "/mobile-money/verify", json_body={"phone": normalized_phone}, timeout_s=timeout_s)

        if resp.status_code == 200 and isinstance(resp.json, dict):
            success = bool(resp.json.get("success") or resp.json.get("valid"))
            account_name = resp.json.get("account_name") or resp.json.get("accountName") or resp.json.get("name")
            return VerificationReply(success=success, account_name=account_name, response=resp.json)

        logger.info("gateway verify %s -> HTTP %s", mask_phone(normalized_phone), resp.status_code)
        return VerificationReply(
            success=False,
            response={"http_status": resp.status_code, "body": resp.json},
            error=_body_message(resp) or f"HTTP {resp.status_code}",
        )

    def initiate_refund(
        self,
        gateway_reference: str,
        amount: int,
        reason: str,
        *,
        refund_reference: str | None = None,
    ) -> RefundInitiation:
        body = {
            "transaction_reference": gateway_reference,
            "amount": int(amount),
            "reason": reason,
        }
        extra_headers = None
        if refund_reference:
            body["client_reference"] = refund_reference
            extra_headers = {"X-Reference-Id": refund_reference}
        resp = self._call("POST", "/refunds", json_body=body, extra_headers=extra_headers)

        if resp.status_code in (200, 201, 202) and isinstance(resp.json, dict):
            status = (resp.json.get("status") or "").upper()
            reference = (
                resp.json.get("external_reference")
                or resp.json.get("reference")
                or resp.json.get("refund_id")
                or resp.json.get("id")
            )
            if status in FAILED_STATUSES:
                return RefundInitiation(accepted=False, response=resp.json, error=_body_message(resp) or status)
            if not reference:
                return RefundInitiation(accepted=False, response=resp.json, error="Gateway returned no refund reference")
            return RefundInitiation(accepted=True, external_reference=str(reference), response=resp.json)

        return RefundInitiation(
            accepted=False,
            response={"http_status": resp.status_code, "body": resp.json, "text": resp.text},
            error=_body_message(resp) or f"HTTP {resp.status_code}",
        )

    def query_refund_status(self, external_reference: str) -> RefundStatusReply:
        resp = self._call("GET", f"/refunds/{external_reference}")

        if resp.status_code == 200 and isinstance(resp.json, dict):
            st = (resp.json.get("status") or "").upper()
            if st in COMPLETED_STATUSES:
                return RefundStatusReply(status="COMPLETED", response=resp.json)
            if st in FAILED_STATUSES:
                return RefundStatusReply(status="FAILED", failure_reason=_body_message(resp) or st, response=resp.json)
            return RefundStatusReply(status="PENDING", response=resp.json)

        # unknown answer: keep waiting, the poll budget decides
        return RefundStatusReply(
            status="PENDING",
            response={"http_status": resp.status_code, "body": resp.json, "text": resp.text},
        )
