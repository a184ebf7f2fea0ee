# app/workers/refund_worker.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.errors import GatewayError
from app.providers.factory import get_gateway
from app.refunds.model import Refund, RefundStatus
from app.refunds.service import RefundStateMachine
from settings import settings

logger = logging.getLogger("mbotamapay")

R = RefundStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _next_poll_at(poll_count: int, now: datetime) -> datetime:
    # 30, 60, 120, 240...
    delay = settings.REFUND_POLL_BACKOFF_SECONDS * (2 ** max(0, poll_count - 1))
    return now + timedelta(seconds=delay)


def process_once(machine: RefundStateMachine, *, batch_size: int = 50, now: Optional[datetime] = None) -> int:
    now = now or _now()
    due = machine.repository.claim_processing(now=now, limit=batch_size)
    logger.info("[refund-worker] due_processing=%s", len(due))

    processed = 0
    for refund in due:
        processed += 1
        _handle_processing(machine, refund, now)
    return processed


def _handle_processing(machine: RefundStateMachine, refund: Refund, now: datetime) -> None:
    # no reference yet: the dispatch never reached the gateway, so send again instead of polling
    if not (refund.external_reference or "").strip():
        logger.info("[refund-worker] refund=%s missing external_reference -> redispatch", refund.id)
        machine.redispatch(refund.id, now=now)
        return

    poll = refund.poll_count + 1
    try:
        reply = machine.gateway.query_refund_status(refund.external_reference)
    except GatewayError as e:
        logger.warning("[refund-worker] refund=%s status poll %s failed: %s", refund.id, poll, e.message)
        _reschedule(machine, refund, poll, now, last_error=e.message)
        return

    if reply.terminal:
        machine.apply_gateway_update(refund.external_reference, reply)
        return

    _reschedule(machine, refund, poll, now, last_error=None)


def _reschedule(machine: RefundStateMachine, refund: Refund, poll: int, now: datetime, *, last_error: Optional[str]) -> None:
    if poll >= settings.REFUND_STATUS_MAX_POLLS:
        reason = f"No gateway confirmation after {poll} status checks"
        if last_error:
            reason = f"{reason}: {last_error}"
        logger.info("[refund-worker] refund=%s -> FAILED (%s)", refund.id, reason)
        machine.fail_refund(refund.id, reason)
        return

    machine.repository.update_status(
        refund.id,
        from_status=R.PROCESSING,
        new_status=R.PROCESSING,
        poll_count=poll,
        next_poll_at=_next_poll_at(poll, now),
        last_error=last_error,
    )


def run_forever(machine: Optional[RefundStateMachine] = None, *, poll_seconds: int = 5, batch_size: int = 50) -> None:
    machine = machine or RefundStateMachine(get_gateway())
    logger.info("[refund-worker] started")
    while True:
        n = process_once(machine, batch_size=batch_size)
        if n == 0:
            time.sleep(poll_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_forever()
