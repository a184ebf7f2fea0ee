import re
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.errors import GatewayTimeoutError, InvalidRefundRequestError, RefundNotFoundError
from app.providers.base import RefundStatusReply
from app.providers.mock import MockGateway
from app.refunds.model import RefundStatus as R
from app.refunds.service import RefundStateMachine
from services.audit_log import REFUND_INITIATED, REFUND_TRANSITIONED

REASON = "Recipient never received the funds"


def test_request_dispatches_to_gateway(machine, gateway, repo, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)

    assert resp.status == R.PROCESSING
    assert resp.external_reference.startswith("mock-rf-")
    assert resp.amount == settled_tx.amount
    assert resp.reason == REASON
    assert resp.processed_at is None
    assert re.fullmatch(r"REF-[0-9A-F]{8}", resp.refund_reference)
    assert gateway.refund_calls == [
        {
            "gateway_reference": settled_tx.gateway_reference,
            "amount": settled_tx.amount,
            "reason": REASON,
            "refund_reference": resp.refund_reference,
        }
    ]
    stored = repo.get(resp.id)
    assert stored.attempt_count == 1
    assert stored.next_poll_at is None


def test_request_is_audited(machine, audit, repo, settled_tx):
    machine.request_refund(settled_tx, REASON)
    assert audit.actions() == [REFUND_INITIATED, REFUND_TRANSITIONED]
    assert audit.events[0].metadata["amount"] == settled_tx.amount
    assert audit.events[0].metadata["refund_reference"] == repo.list_refunds()[0].refund_reference
    assert audit.events[1].metadata == {
        "from_status": "REQUESTED",
        "to_status": "PROCESSING",
        "external_reference": None,
        "failure_reason": None,
    }


def test_partial_refund(machine, settled_tx):
    resp = machine.request_refund(settled_tx, REASON, amount=10_000)
    assert resp.amount == 10_000


def test_amount_over_transaction_rejected_without_record(machine, gateway, repo, settled_tx):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(settled_tx, REASON, amount=settled_tx.amount + 1)

    assert repo.list_refunds() == []
    assert gateway.refund_calls == []


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amount_rejected(machine, settled_tx, amount):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(settled_tx, REASON, amount=amount)


@pytest.mark.parametrize("reason", ["", "   ", "too short", "x" * 501])
def test_reason_length_enforced(machine, settled_tx, reason):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(settled_tx, reason)


def test_reason_is_trimmed(machine, settled_tx):
    resp = machine.request_refund(settled_tx, f"   {REASON}   ")
    assert resp.reason == REASON


@pytest.mark.parametrize("status", ["PENDING", "FAILED", "REFUNDED"])
def test_unsettled_transaction_rejected(machine, make_tx, status):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(make_tx(status=status), REASON)


@pytest.mark.parametrize("existing", [R.REQUESTED, R.PROCESSING, R.COMPLETED])
def test_existing_blocking_refund_rejected(machine, gateway, make_tx, existing):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(make_tx(existing_refund_status=existing), REASON)
    assert gateway.refund_calls == []


@pytest.mark.parametrize("existing", [R.FAILED, R.REJECTED])
def test_failed_or_rejected_refund_does_not_block(machine, make_tx, existing):
    resp = machine.request_refund(make_tx(existing_refund_status=existing), REASON)
    assert resp.status == R.PROCESSING


def test_second_request_for_same_transaction_rejected(machine, settled_tx):
    machine.request_refund(settled_tx, REASON)
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(settled_tx, REASON)


def test_retry_allowed_after_failed_refund(gateway, repo, audit, settled_tx):
    gateway.refund_mode = "decline"
    machine = RefundStateMachine(gateway, repo, audit=audit, auto_dispatch=True, initiate_backoff_s=0)
    first = machine.request_refund(settled_tx, REASON)
    assert first.status == R.FAILED

    gateway.refund_mode = "accept"
    second = machine.request_refund(settled_tx, REASON)
    assert second.status == R.PROCESSING
    assert len(repo.find_by_transaction(settled_tx.id)) == 2


def test_concurrent_requests_create_one_refund(gateway, repo, settled_tx):
    machine = RefundStateMachine(gateway, repo, auto_dispatch=False)
    outcomes = []
    barrier = threading.Barrier(8)

    def attempt():
        barrier.wait()
        try:
            machine.request_refund(settled_tx, REASON)
            outcomes.append("ok")
        except InvalidRefundRequestError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert len(repo.find_by_transaction(settled_tx.id)) == 1


def test_refund_window_expired(machine, make_tx):
    old = make_tx(completed_at=datetime.now(timezone.utc) - timedelta(days=8))
    with pytest.raises(InvalidRefundRequestError) as exc:
        machine.request_refund(old, REASON)
    assert "7-day" in exc.value.message


def test_refund_window_uses_injected_clock(gateway, make_tx):
    completed = datetime(2026, 1, 1, tzinfo=timezone.utc)
    tx = make_tx(completed_at=completed)

    inside = RefundStateMachine(gateway, clock=lambda: completed + timedelta(days=6), auto_dispatch=False)
    assert inside.request_refund(tx, REASON).status == R.REQUESTED

    outside = RefundStateMachine(gateway, clock=lambda: completed + timedelta(days=7, seconds=1), auto_dispatch=False)
    with pytest.raises(InvalidRefundRequestError):
        outside.request_refund(tx, REASON)


def test_only_sender_can_request(machine, settled_tx):
    with pytest.raises(InvalidRefundRequestError):
        machine.request_refund(settled_tx, REASON, requested_by="someone-else")
    resp = machine.request_refund(settled_tx, REASON, requested_by=settled_tx.sender_id)
    assert resp.status == R.PROCESSING


def test_gateway_decline_fails_refund(gateway, repo, settled_tx):
    gateway.refund_mode = "decline"
    machine = RefundStateMachine(gateway, repo, auto_dispatch=True, initiate_backoff_s=0)
    resp = machine.request_refund(settled_tx, REASON)

    assert resp.status == R.FAILED
    assert resp.failure_reason == "Refund declined by gateway"
    assert resp.processed_at is not None
    assert resp.external_reference is None


def test_transient_gateway_errors_are_retried(repo, settled_tx):
    gw = MockGateway(transient_failures=2)
    machine = RefundStateMachine(gw, repo, auto_dispatch=True, initiate_max_attempts=3, initiate_backoff_s=0)
    resp = machine.request_refund(settled_tx, REASON)

    assert resp.status == R.PROCESSING
    assert resp.external_reference
    assert len(gw.refund_calls) == 3
    assert repo.get(resp.id).attempt_count == 3
    assert {c["refund_reference"] for c in gw.refund_calls} == {resp.refund_reference}


def test_gateway_down_after_all_attempts_fails_refund(repo, settled_tx):
    gw = MockGateway(refund_mode="unavailable")
    machine = RefundStateMachine(gw, repo, auto_dispatch=True, initiate_max_attempts=3, initiate_backoff_s=0)
    resp = machine.request_refund(settled_tx, REASON)

    assert resp.status == R.FAILED
    assert "after 3 attempts" in resp.failure_reason
    assert len(gw.refund_calls) == 3


def test_gateway_completion_finishes_refund(machine, repo, audit, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)
    done = machine.apply_gateway_update(resp.external_reference, RefundStatusReply(status="COMPLETED"))

    assert done.status == R.COMPLETED
    assert done.processed_at is not None
    assert done.external_reference == resp.external_reference
    assert settled_tx.id in repo.refunded_transactions
    assert audit.actions()[-1] == REFUND_TRANSITIONED
    assert audit.events[-1].metadata["to_status"] == "COMPLETED"


def test_gateway_failure_finishes_refund(machine, repo, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)
    done = machine.apply_gateway_update(
        resp.external_reference, RefundStatusReply(status="FAILED", failure_reason="Account closed")
    )

    assert done.status == R.FAILED
    assert done.failure_reason == "Account closed"
    assert settled_tx.id not in repo.refunded_transactions


def test_pending_update_is_a_noop(machine, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)
    same = machine.apply_gateway_update(resp.external_reference, RefundStatusReply(status="PENDING"))
    assert same.status == R.PROCESSING
    assert same.processed_at is None


def test_terminal_refund_ignores_later_updates(machine, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)
    done = machine.apply_gateway_update(resp.external_reference, RefundStatusReply(status="COMPLETED"))

    again = machine.apply_gateway_update(resp.external_reference, RefundStatusReply(status="FAILED"))
    assert again.status == R.COMPLETED
    assert again.processed_at == done.processed_at


def test_unknown_external_reference(machine):
    with pytest.raises(RefundNotFoundError):
        machine.apply_gateway_update("nope", RefundStatusReply(status="COMPLETED"))


def test_racing_confirmations_apply_once(machine, repo, audit, settled_tx):
    resp = machine.request_refund(settled_tx, REASON)
    barrier = threading.Barrier(10)
    outcomes = []

    def confirm(status):
        barrier.wait()
        outcomes.append(machine.apply_gateway_update(resp.external_reference, RefundStatusReply(status=status)).status)

    threads = [threading.Thread(target=confirm, args=("COMPLETED" if i % 2 else "FAILED",)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    final = repo.get(resp.id)
    assert final.status in (R.COMPLETED, R.FAILED)
    assert set(outcomes) == {final.status}
    terminal_events = [e for e in audit.events if e.metadata.get("to_status") in ("COMPLETED", "FAILED")]
    assert len(terminal_events) == 1


def test_manual_review_approve(gateway, repo, settled_tx):
    machine = RefundStateMachine(gateway, repo, auto_dispatch=False)
    requested = machine.request_refund(settled_tx, REASON)

    assert requested.status == R.REQUESTED
    assert gateway.refund_calls == []

    approved = machine.approve_refund(requested.id)
    assert approved.status == R.PROCESSING
    assert len(gateway.refund_calls) == 1

    with pytest.raises(InvalidRefundRequestError):
        machine.approve_refund(requested.id)


def test_manual_review_reject(gateway, repo, settled_tx):
    machine = RefundStateMachine(gateway, repo, auto_dispatch=False)
    requested = machine.request_refund(settled_tx, REASON)

    rejected = machine.reject_refund(requested.id, "Duplicate claim")
    assert rejected.status == R.REJECTED
    assert rejected.failure_reason == "Duplicate claim"
    assert rejected.processed_at is not None
    assert gateway.refund_calls == []

    with pytest.raises(InvalidRefundRequestError):
        machine.reject_refund(requested.id, "again")


def test_queries(machine, settled_tx):
    resp = machine.request_refund(settled_tx, REASON, requested_by=settled_tx.sender_id)

    assert machine.get_refund(resp.id).id == resp.id
    assert machine.get_refund(resp.id, requested_by=settled_tx.sender_id).id == resp.id
    with pytest.raises(InvalidRefundRequestError):
        machine.get_refund(resp.id, requested_by="intruder")

    assert machine.get_refund_by_transaction(settled_tx.id).id == resp.id
    assert [r.id for r in machine.list_refunds(requested_by=settled_tx.sender_id)] == [resp.id]
    assert machine.list_refunds(requested_by="nobody") == []


def test_missing_refund(machine):
    with pytest.raises(RefundNotFoundError):
        machine.get_refund(uuid.uuid4())
    with pytest.raises(RefundNotFoundError):
        machine.get_refund_by_transaction(uuid.uuid4())


def test_transaction_lookup_checks_owner(machine, settled_tx):
    resp = machine.request_refund(settled_tx, REASON, requested_by=settled_tx.sender_id)

    assert machine.get_refund_by_transaction(settled_tx.id, requested_by=settled_tx.sender_id).id == resp.id
    with pytest.raises(InvalidRefundRequestError):
        machine.get_refund_by_transaction(settled_tx.id, requested_by="intruder")


def test_each_refund_gets_its_own_reference(gateway, repo, make_tx):
    machine = RefundStateMachine(gateway, repo, auto_dispatch=False)
    first = machine.request_refund(make_tx(), REASON)
    second = machine.request_refund(make_tx(), REASON)

    assert first.refund_reference != second.refund_reference


class FlakyGateway(MockGateway):
    """Times out after the gateway already recorded the refund, then succeeds."""

    def __init__(self):
        super().__init__()
        self.seen_by_gateway = {}

    def initiate_refund(self, gateway_reference, amount, reason, *, refund_reference=None):
        reply = super().initiate_refund(gateway_reference, amount, reason, refund_reference=refund_reference)
        self.seen_by_gateway.setdefault(refund_reference, reply.external_reference)
        if len(self.refund_calls) == 1:
            raise GatewayTimeoutError("Gateway timeout")
        return reply


def test_timeout_then_retry_reuses_refund_reference(repo, settled_tx):
    gw = FlakyGateway()
    machine = RefundStateMachine(gw, repo, auto_dispatch=True, initiate_max_attempts=3, initiate_backoff_s=0)

    resp = machine.request_refund(settled_tx, REASON)

    assert resp.status == R.PROCESSING
    assert len(gw.refund_calls) == 2
    keys = [c["refund_reference"] for c in gw.refund_calls]
    assert keys == [resp.refund_reference, resp.refund_reference]
    # the gateway saw one refund, and the retry got the reference it created the first time
    assert list(gw.seen_by_gateway) == [resp.refund_reference]
    assert resp.external_reference == gw.seen_by_gateway[resp.refund_reference]


def test_redispatch_skips_refund_under_dispatch_lease(gateway, repo, settled_tx):
    machine = RefundStateMachine(gateway, repo, auto_dispatch=False)
    requested = machine.request_refund(settled_tx, REASON)
    now = datetime.now(timezone.utc)
    repo.update_status(
        requested.id,
        from_status=R.REQUESTED,
        new_status=R.PROCESSING,
        next_poll_at=now + timedelta(minutes=5),
    )

    resp = machine.redispatch(requested.id, now=now)
    assert resp.status == R.PROCESSING
    assert resp.external_reference is None
    assert gateway.refund_calls == []

    resp = machine.redispatch(requested.id, now=now + timedelta(minutes=6))
    assert resp.external_reference.startswith("mock-rf-")
    assert gateway.refund_calls[0]["refund_reference"] == requested.refund_reference


def test_dispatch_holds_lease_while_gateway_call_runs(repo, settled_tx):
    entered = threading.Event()
    release = threading.Event()
    leases = []

    class SlowGateway(MockGateway):
        def initiate_refund(self, gateway_reference, amount, reason, *, refund_reference=None):
            leases.append(repo.find_by_transaction(settled_tx.id)[0].next_poll_at)
            entered.set()
            release.wait(5)
            return super().initiate_refund(gateway_reference, amount, reason, refund_reference=refund_reference)

    machine = RefundStateMachine(SlowGateway(), repo, auto_dispatch=True, initiate_backoff_s=0)
    t = threading.Thread(target=machine.request_refund, args=(settled_tx, REASON))
    t.start()
    assert entered.wait(5)

    refund = repo.find_by_transaction(settled_tx.id)[0]
    assert repo.claim_processing(now=datetime.now(timezone.utc), limit=10) == []
    assert repo.acquire_dispatch_lease(
        refund.id, now=datetime.now(timezone.utc), lease_until=datetime.now(timezone.utc)
    ) is None

    release.set()
    t.join(5)

    assert leases[0] > datetime.now(timezone.utc)
    assert repo.get(refund.id).next_poll_at is None
