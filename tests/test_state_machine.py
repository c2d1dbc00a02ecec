from __future__ import annotations

import pytest

from splitbill.state_machine import (
    ALLOWED_TRANSITIONS,
    INITIAL_STATE,
    InvalidTransitionError,
    can_transition,
    reset_state,
    transition_state,
)


def test_valid_transitions() -> None:
    assert transition_state("UPLOAD", "ASSIGN") == "ASSIGN"
    assert transition_state("ASSIGN", "SUMMARY") == "SUMMARY"
    assert transition_state("summary", "assign") == "ASSIGN"


def test_invalid_transition_raises() -> None:
    with pytest.raises(InvalidTransitionError, match="Invalid transition"):
        transition_state("UPLOAD", "SUMMARY")


def test_unknown_state_raises() -> None:
    with pytest.raises(InvalidTransitionError, match="Unknown state"):
        transition_state("CHECKOUT", "ASSIGN")
    with pytest.raises(InvalidTransitionError, match="Unknown state"):
        transition_state("ASSIGN", "PAID")


def test_reset_allowed_from_every_stage() -> None:
    assert INITIAL_STATE == "UPLOAD"
    for state in ALLOWED_TRANSITIONS:
        assert can_transition(state, INITIAL_STATE)
        assert reset_state(state) == INITIAL_STATE
