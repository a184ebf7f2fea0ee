

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any
from uuid import UUID
from datetime import datetime


class RefundStatus(str, Enum):
    REQUESTED = "REQUESTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RefundStatus.COMPLETED, RefundStatus.FAILED, RefundStatus.REJECTED})

# a transaction with a refund in one of these can't get another one
BLOCKING_STATUSES = frozenset({RefundStatus.REQUESTED, RefundStatus.PROCESSING, RefundStatus.COMPLETED})

SETTLED_TRANSACTION_STATUSES = frozenset({"COMPLETED"})


@dataclass(frozen=True)
class Transaction:
    id: Any
    amount: int
    currency: str
    gateway_reference: str
    status: str
    existing_refund_status: Optional[RefundStatus] = None
    external_reference: Optional[str] = None
    completed_at: Optional[datetime] = None
    sender_id: Any = None


@dataclass(frozen=True)
class Refund:
    id: UUID
    transaction_id: Any
    transaction_reference: Optional[str]
    gateway_reference: str
    amount: int
    currency: str
    status: RefundStatus
    reason: str
    external_reference: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None
    requested_by: Any = None
    attempt_count: int = 0
    poll_count: int = 0
    next_poll_at: Optional[datetime] = None
    last_error: Optional[str] = None
    refund_reference: Optional[str] = None


@dataclass(frozen=True)
class RefundResponse:
    id: UUID
    transaction_id: Any
    transaction_reference: Optional[str]
    amount: int
    currency: str
    status: RefundStatus
    reason: str
    external_reference: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    processed_at: Optional[datetime]
    refund_reference: Optional[str] = None

    @classmethod
    def from_refund(cls, refund: Refund) -> "RefundResponse":
        return cls(
            id=refund.id,
            transaction_id=refund.transaction_id,
            transaction_reference=refund.transaction_reference,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status,
            reason=refund.reason,
            external_reference=refund.external_reference,
            failure_reason=refund.failure_reason,
            created_at=refund.created_at,
            processed_at=refund.processed_at,
            refund_reference=refund.refund_reference,
        )
