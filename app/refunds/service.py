# app/refunds/service.py
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from app.errors import GatewayError, InvalidRefundRequestError, RefundNotFoundError
from app.providers.base import GatewayClient, RefundInitiation, RefundStatusReply
from app.refunds.model import (
    BLOCKING_STATUSES,
    SETTLED_TRANSACTION_STATUSES,
    Refund,
    RefundResponse,
    RefundStatus,
    Transaction,
)
from app.refunds.repository import InMemoryRefundRepository, RefundRepository
from services.audit_log import REFUND_INITIATED, REFUND_TRANSITIONED, AuditSink, write_audit_log
from settings import settings

logger = logging.getLogger("mbotamapay")

R = RefundStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _refund_reference() -> str:
    return "REF-" + uuid.uuid4().hex[:8].upper()


class RefundStateMachine:
    """
    Refund lifecycle against a settled transaction:

      REQUESTED  -> PROCESSING   dispatched to the gateway
      REQUESTED  -> REJECTED     local rejection, no gateway call
      PROCESSING -> COMPLETED    gateway confirms settlement
      PROCESSING -> FAILED       gateway failure, or retry/poll budget exhausted

    Every status change goes through the repository's compare-and-swap, so two
    racing confirmations for the same refund can't both apply and terminal
    records never move again.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        repository: Optional[RefundRepository] = None,
        *,
        audit: Optional[AuditSink] = None,
        auto_dispatch: Optional[bool] = None,
        window_days: Optional[int] = None,
        initiate_max_attempts: Optional[int] = None,
        initiate_backoff_s: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.repository = repository or InMemoryRefundRepository()
        self.audit = audit
        self.auto_dispatch = settings.REFUND_AUTO_DISPATCH if auto_dispatch is None else auto_dispatch
        self.window_days = settings.REFUND_WINDOW_DAYS if window_days is None else window_days
        self.initiate_max_attempts = int(initiate_max_attempts or settings.REFUND_INITIATE_MAX_ATTEMPTS)
        self.initiate_backoff_s = settings.REFUND_INITIATE_BACKOFF_S if initiate_backoff_s is None else initiate_backoff_s
        self.clock = clock

    # ==========================================================
    # Requests
    # ==========================================================

    def request_refund(
        self,
        transaction: Transaction,
        reason: str,
        *,
        amount: Optional[int] = None,
        requested_by: Any = None,
    ) -> RefundResponse:
        reason_text, refund_amount = self._preflight(transaction, reason, amount, requested_by)

        now = self.clock()
        refund = Refund(
            id=uuid.uuid4(),
            transaction_id=transaction.id,
            transaction_reference=transaction.external_reference,
            gateway_reference=transaction.gateway_reference,
            amount=refund_amount,
            currency=transaction.currency,
            status=R.REQUESTED,
            reason=reason_text,
            external_reference=None,
            failure_reason=None,
            created_at=now,
            updated_at=now,
            requested_by=requested_by,
            refund_reference=_refund_reference(),
        )

        if not self.repository.add_if_no_blocking(refund):
            raise InvalidRefundRequestError("A refund already exists for this transaction")

        write_audit_log(
            self.audit,
            action=REFUND_INITIATED,
            target_id=str(refund.id),
            metadata={
                "transaction_id": str(transaction.id),
                "transaction_reference": transaction.external_reference,
                "amount": refund_amount,
                "currency": transaction.currency,
                "refund_reference": refund.refund_reference,
            },
        )
        logger.info(
            "Refund requested: id=%s reference=%s transaction=%s amount=%s",
            refund.id, refund.refund_reference, transaction.id, refund_amount,
        )

        if not self.auto_dispatch:
            return RefundResponse.from_refund(refund)

        return RefundResponse.from_refund(self._dispatch(refund))

    def _preflight(
        self,
        transaction: Transaction,
        reason: str,
        amount: Optional[int],
        requested_by: Any,
    ) -> tuple[str, int]:
        if transaction is None:
            raise TypeError("transaction must not be None")

        reason_text = (reason or "").strip()
        lo, hi = settings.REFUND_REASON_MIN_LENGTH, settings.REFUND_REASON_MAX_LENGTH
        if not lo <= len(reason_text) <= hi:
            raise InvalidRefundRequestError(f"Refund reason must be between {lo} and {hi} characters")

        if requested_by is not None and transaction.sender_id is not None and requested_by != transaction.sender_id:
            raise InvalidRefundRequestError("Not allowed to request a refund for this transaction")

        if (transaction.status or "").upper() not in SETTLED_TRANSACTION_STATUSES:
            raise InvalidRefundRequestError("Only completed transactions can be refunded")

        refund_amount = transaction.amount if amount is None else amount
        if not isinstance(refund_amount, int) or isinstance(refund_amount, bool) or refund_amount <= 0:
            raise InvalidRefundRequestError("Refund amount must be a positive integer")
        if refund_amount > transaction.amount:
            raise InvalidRefundRequestError(
                f"Refund amount {refund_amount} exceeds transaction amount {transaction.amount}"
            )

        if transaction.existing_refund_status is not None and R(transaction.existing_refund_status) in BLOCKING_STATUSES:
            raise InvalidRefundRequestError("A refund already exists for this transaction")

        if self.window_days and transaction.completed_at is not None:
            deadline = transaction.completed_at + timedelta(days=self.window_days)
            if self.clock() > deadline:
                raise InvalidRefundRequestError(f"The {self.window_days}-day refund period has expired")

        return reason_text, refund_amount

    # ==========================================================
    # Manual review (auto_dispatch=False)
    # ==========================================================

    def approve_refund(self, refund_id: UUID) -> RefundResponse:
        refund = self._get(refund_id)
        if refund.status != R.REQUESTED:
            raise InvalidRefundRequestError("This refund has already been processed")
        return RefundResponse.from_refund(self._dispatch(refund))

    def reject_refund(self, refund_id: UUID, note: str) -> RefundResponse:
        refund = self._get(refund_id)
        updated = self.repository.update_status(
            refund.id,
            from_status=R.REQUESTED,
            new_status=R.REJECTED,
            failure_reason=(note or "").strip() or "Rejected",
        )
        if updated is None:
            raise InvalidRefundRequestError("This refund has already been processed")
        self._audit_transition(updated, R.REQUESTED)
        return RefundResponse.from_refund(updated)

    # ==========================================================
    # Gateway dispatch
    # ==========================================================

    def _dispatch(self, refund: Refund) -> Refund:
        processing = self.repository.update_status(
            refund.id,
            from_status=R.REQUESTED,
            new_status=R.PROCESSING,
            next_poll_at=self._lease_until(),
        )
        if processing is None:
            # someone else moved it first
            return self._get(refund.id)
        self._audit_transition(processing, R.REQUESTED)
        return self._initiate(processing)

    def _lease_until(self, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) + timedelta(seconds=settings.REFUND_DISPATCH_LEASE_S)

    def _initiate(self, refund: Refund) -> Refund:
        """
        Send a PROCESSING refund that has no external_reference yet to the gateway.
        The caller must hold the dispatch lease. Every attempt carries the same
        refund_reference so the gateway can drop duplicates.
        """
        attempt = refund.attempt_count
        last_error: str | None = None
        initiation: RefundInitiation | None = None

        for n in range(1, self.initiate_max_attempts + 1):
            attempt += 1
            try:
                initiation = self.gateway.initiate_refund(
                    refund.gateway_reference,
                    refund.amount,
                    refund.reason,
                    refund_reference=refund.refund_reference,
                )
                break
            except GatewayError as e:
                last_error = e.message
                logger.warning("Refund %s: initiate attempt %s failed: %s", refund.id, attempt, e.message)
                if self.initiate_backoff_s and n < self.initiate_max_attempts:
                    time.sleep(self.initiate_backoff_s * (2 ** (n - 1)))

        if initiation is None:
            return self._finish(
                refund,
                R.FAILED,
                failure_reason=f"Gateway unavailable after {self.initiate_max_attempts} attempts: {last_error}",
                attempt_count=attempt,
            )

        if not initiation.accepted:
            return self._finish(
                refund,
                R.FAILED,
                failure_reason=initiation.error or "Refund declined by gateway",
                attempt_count=attempt,
            )

        updated = self.repository.update_status(
            refund.id,
            from_status=R.PROCESSING,
            new_status=R.PROCESSING,
            external_reference=initiation.external_reference,
            attempt_count=attempt,
            last_error=None,
            next_poll_at=None,
        )
        if updated is None:
            return self._get(refund.id)
        logger.info("Refund %s dispatched: external_reference=%s", refund.id, initiation.external_reference)
        return updated

    def redispatch(self, refund_id: UUID, *, now: Optional[datetime] = None) -> RefundResponse:
        """
        Retry the gateway call for a PROCESSING refund whose dispatch never got a
        reference. Does nothing while another dispatch still holds the lease.
        """
        now = now or self.clock()
        leased = self.repository.acquire_dispatch_lease(refund_id, now=now, lease_until=self._lease_until(now))
        if leased is None:
            return RefundResponse.from_refund(self._get(refund_id))
        logger.info("Refund %s: redispatching with reference %s", leased.id, leased.refund_reference)
        return RefundResponse.from_refund(self._initiate(leased))

    # ==========================================================
    # Reconciliation
    # ==========================================================

    def apply_gateway_update(self, external_reference: str, outcome: RefundStatusReply) -> RefundResponse:
        """
        Apply an asynchronous gateway answer (callback or poll). Safe to call
        from any thread and any number of times; terminal refunds ignore it.
        """
        refund = self.repository.get_by_external_reference(external_reference)
        if refund is None:
            raise RefundNotFoundError(f"No refund for external reference {external_reference}")

        if refund.status.terminal:
            logger.info("Refund %s already %s, ignoring gateway update %s", refund.id, refund.status.value, outcome.status)
            return RefundResponse.from_refund(refund)

        if outcome.status == "COMPLETED":
            return RefundResponse.from_refund(self._finish(refund, R.COMPLETED))
        if outcome.status == "FAILED":
            return RefundResponse.from_refund(
                self._finish(refund, R.FAILED, failure_reason=outcome.failure_reason or "Refund failed at gateway")
            )
        return RefundResponse.from_refund(refund)

    def fail_refund(self, refund_id: UUID, reason: str) -> RefundResponse:
        refund = self._get(refund_id)
        if refund.status != R.PROCESSING:
            return RefundResponse.from_refund(refund)
        return RefundResponse.from_refund(self._finish(refund, R.FAILED, failure_reason=reason))

    def _finish(self, refund: Refund, new_status: RefundStatus, **fields: Any) -> Refund:
        updated = self.repository.update_status(
            refund.id, from_status=R.PROCESSING, new_status=new_status, **fields
        )
        if updated is None:
            # lost the race; whoever won already stamped the terminal state
            return self._get(refund.id)

        if new_status == R.COMPLETED:
            self.repository.mark_transaction_refunded(updated.transaction_id)
        logger.info(
            "Refund processed: id=%s status=%s failure_reason=%s",
            updated.id, updated.status.value, updated.failure_reason,
        )
        self._audit_transition(updated, R.PROCESSING)
        return updated

    # ==========================================================
    # Queries
    # ==========================================================

    def get_refund(self, refund_id: UUID, *, requested_by: Any = None) -> RefundResponse:
        refund = self._get(refund_id)
        self._check_owner(refund, requested_by)
        return RefundResponse.from_refund(refund)

    def get_refund_by_transaction(self, transaction_id: Any, *, requested_by: Any = None) -> RefundResponse:
        refunds = self.repository.find_by_transaction(transaction_id)
        if not refunds:
            raise RefundNotFoundError("No refund found for this transaction")
        refund = refunds[0]
        self._check_owner(refund, requested_by)
        return RefundResponse.from_refund(refund)

    def list_refunds(self, *, requested_by: Any = None) -> list[RefundResponse]:
        return [RefundResponse.from_refund(r) for r in self.repository.list_refunds(requested_by=requested_by)]

    @staticmethod
    def _check_owner(refund: Refund, requested_by: Any) -> None:
        if requested_by is not None and refund.requested_by is not None and refund.requested_by != requested_by:
            raise InvalidRefundRequestError("Not allowed to access this refund")

    def _get(self, refund_id: UUID) -> Refund:
        refund = self.repository.get(refund_id)
        if refund is None:
            raise RefundNotFoundError("Refund not found")
        return refund

    def _audit_transition(self, refund: Refund, from_status: RefundStatus) -> None:
        write_audit_log(
            self.audit,
            action=REFUND_TRANSITIONED,
            target_id=str(refund.id),
            metadata={
                "from_status": from_status.value,
                "to_status": refund.status.value,
                "external_reference": refund.external_reference,
                "failure_reason": refund.failure_reason,
            },
        )
