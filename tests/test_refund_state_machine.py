import pytest

from app.errors import InvalidTransition
from app.refunds.model import RefundStatus as R
from app.refunds.state_machine import assert_completed_invariant, assert_transition


def test_valid_transitions():
    assert_transition(R.REQUESTED, R.PROCESSING)
    assert_transition(R.REQUESTED, R.REJECTED)
    assert_transition(R.PROCESSING, R.COMPLETED)
    assert_transition(R.PROCESSING, R.FAILED)
    assert_transition(R.PROCESSING, R.PROCESSING)


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition(R.REQUESTED, R.COMPLETED)
    with pytest.raises(InvalidTransition):
        assert_transition(R.REQUESTED, R.FAILED)


def test_terminal_states_cannot_transition():
    for terminal in (R.COMPLETED, R.FAILED, R.REJECTED):
        for target in R:
            with pytest.raises(InvalidTransition):
                assert_transition(terminal, target)


def test_completed_requires_external_reference():
    with pytest.raises(ValueError):
        assert_completed_invariant(R.COMPLETED, None)
    assert_completed_invariant(R.COMPLETED, "rf-1")
    assert_completed_invariant(R.FAILED, None)
