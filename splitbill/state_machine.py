from __future__ import annotations

from typing import Final


class InvalidTransitionError(ValueError):
    pass


UPLOAD: Final[str] = "UPLOAD"
ASSIGN: Final[str] = "ASSIGN"
SUMMARY: Final[str] = "SUMMARY"

INITIAL_STATE: Final[str] = UPLOAD

ALLOWED_TRANSITIONS: Final[dict[str, set[str]]] = {
    UPLOAD: {ASSIGN},
    ASSIGN: {SUMMARY},
    SUMMARY: {ASSIGN},
}


def _normalize(state: str) -> str:
    return state.strip().upper()


def can_transition(from_state: str, to_state: str) -> bool:
    from_norm = _normalize(from_state)
    to_norm = _normalize(to_state)
    if from_norm in ALLOWED_TRANSITIONS and to_norm == INITIAL_STATE:
        return True
    return to_norm in ALLOWED_TRANSITIONS.get(from_norm, set())


def transition_state(from_state: str, to_state: str) -> str:
    from_norm = _normalize(from_state)
    to_norm = _normalize(to_state)

    if from_norm not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown state: {from_state}")
    if to_norm not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown state: {to_state}")
    if not can_transition(from_norm, to_norm):
        raise InvalidTransitionError(f"Invalid transition: {from_norm} -> {to_norm}")
    return to_norm


def reset_state(from_state: str) -> str:
    # Reset is legal from every known stage.
    return transition_state(from_state, INITIAL_STATE)
