from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from services.observability import get_request_id
from services.redaction import redact_dict

logger = logging.getLogger("mbotamapay.audit")

VERIFICATION_ATTEMPTED = "VERIFICATION_ATTEMPTED"
REFUND_INITIATED = "REFUND_INITIATED"
REFUND_TRANSITIONED = "REFUND_TRANSITIONED"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    target_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Default sink: one structured log line per event; display formatting belongs to the consumer."""

    def emit(self, event: AuditEvent) -> None:
        logger.info(
            "audit action=%s target=%s request_id=%s metadata=%s",
            event.action,
            event.target_id,
            event.request_id,
            event.metadata,
        )


class InMemoryAuditSink:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def actions(self) -> list[str]:
        with self._lock:
            return [e.action for e in self.events]


def write_audit_log(
    sink: AuditSink | None,
    *,
    action: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> AuditEvent:
    event = AuditEvent(
        action=action,
        target_id=target_id,
        metadata=redact_dict(metadata or {}),
        request_id=get_request_id(),
    )
    (sink or LoggingAuditSink()).emit(event)
    return event
