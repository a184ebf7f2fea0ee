



# app/refunds/state_machine.py
from app.errors import InvalidTransition
from app.refunds.model import RefundStatus

R = RefundStatus

ALLOWED = {
    R.REQUESTED: {R.PROCESSING, R.REJECTED},
    R.PROCESSING: {R.COMPLETED, R.FAILED, R.PROCESSING},  # PROCESSING->PROCESSING for reference/poll bookkeeping
    R.COMPLETED: set(),
    R.FAILED: set(),
    R.REJECTED: set(),
}


def assert_transition(old: RefundStatus, new: RefundStatus) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal refund transition: {old.value} -> {new.value}")


def assert_completed_invariant(new_status: RefundStatus, external_reference: str | None) -> None:
    """
    Invariant: a COMPLETED refund MUST carry the gateway's external_reference.
    """
    if new_status == R.COMPLETED and not external_reference:
        raise ValueError("Invariant violation: status=COMPLETED requires external_reference")
