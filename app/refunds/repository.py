

# app/refunds/repository.py
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Protocol
from uuid import UUID

from app.refunds.model import BLOCKING_STATUSES, Refund, RefundStatus
from app.refunds.state_machine import assert_completed_invariant, assert_transition

_UNSET: Any = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundRepository(Protocol):
    """
    Persistence port for refund records.

    update_status is a compare-and-swap: it only applies when the stored status
    still equals from_status, and returns None otherwise. Implementations must
    make add_if_no_blocking, update_status and acquire_dispatch_lease atomic
    per record.
    """

    def add_if_no_blocking(self, refund: Refund) -> bool: ...
    def get(self, refund_id: UUID) -> Optional[Refund]: ...
    def get_by_external_reference(self, external_reference: str) -> Optional[Refund]: ...
    def find_by_transaction(self, transaction_id: Any) -> list[Refund]: ...
    def list_refunds(self, *, requested_by: Any = None) -> list[Refund]: ...
    def claim_processing(self, *, now: datetime, limit: int) -> list[Refund]: ...
    def update_status(self, refund_id: UUID, *, from_status: RefundStatus, new_status: RefundStatus, **fields: Any) -> Optional[Refund]: ...
    def acquire_dispatch_lease(self, refund_id: UUID, *, now: datetime, lease_until: datetime) -> Optional[Refund]: ...
    def mark_transaction_refunded(self, transaction_id: Any) -> None: ...


class InMemoryRefundRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._refunds: dict[UUID, Refund] = {}
        self._by_external_ref: dict[str, UUID] = {}
        self.refunded_transactions: set[Any] = set()

    # ==========================================================
    # Reads
    # ==========================================================

    def get(self, refund_id: UUID) -> Optional[Refund]:
        with self._lock:
            return self._refunds.get(refund_id)

    def get_by_external_reference(self, external_reference: str) -> Optional[Refund]:
        with self._lock:
            refund_id = self._by_external_ref.get(external_reference)
            return self._refunds.get(refund_id) if refund_id else None

    def find_by_transaction(self, transaction_id: Any) -> list[Refund]:
        with self._lock:
            items = [r for r in self._refunds.values() if r.transaction_id == transaction_id]
        return sorted(items, key=lambda r: r.created_at, reverse=True)

    def list_refunds(self, *, requested_by: Any = None) -> list[Refund]:
        with self._lock:
            items = [r for r in self._refunds.values() if requested_by is None or r.requested_by == requested_by]
        return sorted(items, key=lambda r: r.created_at, reverse=True)

    def claim_processing(self, *, now: datetime, limit: int) -> list[Refund]:
        with self._lock:
            due = [
                r for r in self._refunds.values()
                if r.status == RefundStatus.PROCESSING and (r.next_poll_at is None or r.next_poll_at <= now)
            ]
        due.sort(key=lambda r: (r.next_poll_at or r.updated_at, r.created_at))
        return due[:limit]

    # ==========================================================
    # Writes
    # ==========================================================

    def add_if_no_blocking(self, refund: Refund) -> bool:
        with self._lock:
            for existing in self._refunds.values():
                if existing.transaction_id == refund.transaction_id and existing.status in BLOCKING_STATUSES:
                    return False
            self._refunds[refund.id] = refund
            if refund.external_reference:
                self._by_external_ref[refund.external_reference] = refund.id
            return True

    def update_status(
        self,
        refund_id: UUID,
        *,
        from_status: RefundStatus,
        new_status: RefundStatus,
        external_reference: Optional[str] = _UNSET,
        failure_reason: Optional[str] = _UNSET,
        last_error: Optional[str] = _UNSET,
        attempt_count: int = _UNSET,
        poll_count: int = _UNSET,
        next_poll_at: Optional[datetime] = _UNSET,
    ) -> Optional[Refund]:
        with self._lock:
            current = self._refunds.get(refund_id)
            if current is None or current.status != from_status:
                return None

            assert_transition(current.status, new_status)

            changes: dict[str, Any] = {"status": new_status, "updated_at": _utcnow()}
            for name, value in (
                ("external_reference", external_reference),
                ("failure_reason", failure_reason),
                ("last_error", last_error),
                ("attempt_count", attempt_count),
                ("poll_count", poll_count),
                ("next_poll_at", next_poll_at),
            ):
                if value is not _UNSET:
                    changes[name] = value

            if new_status.terminal:
                changes["next_poll_at"] = None
                if current.processed_at is None:
                    changes["processed_at"] = changes["updated_at"]

            updated = replace(current, **changes)
            assert_completed_invariant(updated.status, updated.external_reference)

            self._refunds[refund_id] = updated
            if updated.external_reference:
                self._by_external_ref[updated.external_reference] = refund_id
            return updated

    def acquire_dispatch_lease(self, refund_id: UUID, *, now: datetime, lease_until: datetime) -> Optional[Refund]:
        """Take ownership of an unsent PROCESSING refund until lease_until, unless someone else holds it."""
        with self._lock:
            current = self._refunds.get(refund_id)
            if current is None or current.status != RefundStatus.PROCESSING or current.external_reference:
                return None
            if current.next_poll_at is not None and current.next_poll_at > now:
                return None

            updated = replace(current, next_poll_at=lease_until, updated_at=_utcnow())
            self._refunds[refund_id] = updated
            return updated

    def mark_transaction_refunded(self, transaction_id: Any) -> None:
        with self._lock:
            self.refunded_transactions.add(transaction_id)
