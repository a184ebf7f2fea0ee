# app/verification/engine.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import replace
from typing import Optional

from app.catalog.countries import name_for_country
from app.catalog.operators import OperatorDirectory, default_directory
from app.errors import GatewayError, PhoneFormatError
from app.providers.base import GatewayClient
from app.verification.model import MobileMoneyVerificationResult
from app.verification.phone import normalize
from services.audit_log import VERIFICATION_ATTEMPTED, AuditSink, write_audit_log
from services.redaction import mask_phone
from settings import settings

logger = logging.getLogger("mbotamapay")

_EXECUTOR: ThreadPoolExecutor | None = None


def _executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    if _EXECUTOR is None:
        _EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="mm-verify")
    return _EXECUTOR


class MobileMoneyVerificationEngine:
    """
    Two levels of verification:
    1. local rules (phone format, country, operator prefix) - fast, offline
    2. live gateway confirmation - confirms the wallet exists, bounded by a timeout

    verify() always returns a result. A gateway that is slow or down never
    blocks a number the local rules already accept; a gateway that answers
    "no such account" does.
    """

    def __init__(
        self,
        gateway: Optional[GatewayClient] = None,
        *,
        directory: Optional[OperatorDirectory] = None,
        timeout_s: Optional[float] = None,
        live_verification: Optional[bool] = None,
        default_country: Optional[str] = None,
        audit: Optional[AuditSink] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.gateway = gateway
        self.directory = directory or default_directory()
        self.timeout_s = float(settings.MM_VERIFY_TIMEOUT_S if timeout_s is None else timeout_s)
        self.live_verification = settings.MM_LIVE_VERIFICATION if live_verification is None else live_verification
        self.default_country = (settings.MM_DEFAULT_COUNTRY if default_country is None else default_country) or None
        self.audit = audit
        self._executor = executor

    def validate_local(self, raw_phone: str, country: str | None = None) -> MobileMoneyVerificationResult:
        if raw_phone is None:
            raise TypeError("raw_phone must not be None")

        try:
            phone = normalize(raw_phone, country or self.default_country)
        except PhoneFormatError as e:
            return MobileMoneyVerificationResult(valid=False, error_message=e.message)

        country_name = name_for_country(phone.country_code)
        match = self.directory.lookup(phone.country_code, phone.national_number)

        if not match.found:
            return MobileMoneyVerificationResult(
                valid=False,
                country=country_name,
                normalized_phone=phone.normalized_e164,
                mobile_money_supported=False,
                error_message="Operator not recognized for this number",
            )

        if not match.mobile_money_supported:
            return MobileMoneyVerificationResult(
                valid=False,
                country=country_name,
                operator=match.operator_name,
                operator_code=match.operator_code,
                normalized_phone=phone.normalized_e164,
                mobile_money_supported=False,
                error_message="This operator does not support mobile money",
            )

        return MobileMoneyVerificationResult(
            valid=True,
            api_verified=False,
            country=country_name,
            operator=match.operator_name,
            operator_code=match.operator_code,
            normalized_phone=phone.normalized_e164,
            mobile_money_supported=True,
        )

    def verify(self, raw_phone: str, country: str | None = None) -> MobileMoneyVerificationResult:
        local = self.validate_local(raw_phone, country)
        result = local
        gateway_error: str | None = None

        if local.valid and self.live_verification and self.gateway is not None:
            result, gateway_error = self._confirm_with_gateway(local)

        write_audit_log(
            self.audit,
            action=VERIFICATION_ATTEMPTED,
            target_id=mask_phone(result.normalized_phone),
            metadata={
                "valid": result.valid,
                "api_verified": result.api_verified,
                "operator_code": result.operator_code,
                "mobile_money_supported": result.mobile_money_supported,
                "error": result.error_message or gateway_error,
            },
        )
        return result

    def _confirm_with_gateway(
        self, local: MobileMoneyVerificationResult
    ) -> tuple[MobileMoneyVerificationResult, str | None]:
        phone = local.normalized_phone or ""
        executor = self._executor or _executor()
        future = executor.submit(self.gateway.verify_mobile_money, phone, timeout_s=self.timeout_s)

        try:
            reply = future.result(timeout=self.timeout_s)
        except FuturesTimeout:
            # the call keeps running on its worker; only our wait ends here
            logger.warning("mm verify: gateway timed out after %ss for %s, using local result", self.timeout_s, mask_phone(phone))
            return local, "Gateway timeout"
        except GatewayError as e:
            logger.warning("mm verify: gateway error for %s (%s), using local result", mask_phone(phone), e.error_kind)
            return local, e.message
        except Exception as e:
            logger.warning("mm verify: unexpected gateway failure for %s: %s", mask_phone(phone), e)
            return local, f"Gateway failure: {e}"

        if not reply.success:
            logger.info("mm verify: gateway rejected %s (%s)", mask_phone(phone), reply.error)
            message = reply.error or "Mobile money account not found"
            return replace(local, valid=False, api_verified=True, error_message=message), message

        return replace(local, api_verified=True, account_name=reply.account_name), None
