"""Controller state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    IDLE ──> STARTING ──> STREAMING ──┬──> COMPLETED ──> IDLE
                │                     │
                │                     ├──> WAITING_PERMISSION ──> STREAMING
                │                     │
                │                     ├──> ERRORED ──> IDLE
                │                     │
                │                     └──> STOPPED ──> IDLE
                │
                └──> COMPLETED | ERRORED | STOPPED

COMPLETED, ERRORED and STOPPED are reporting states: the controller
passes through them and lands on IDLE in the same step.
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import ProcessState

_TERMINAL = {
    ProcessState.COMPLETED,
    ProcessState.ERRORED,
    ProcessState.STOPPED,
}

VALID_TRANSITIONS: dict[ProcessState, set[ProcessState]] = {
    ProcessState.IDLE: {
        ProcessState.STARTING,
    },
    ProcessState.STARTING: {
        ProcessState.STREAMING,
        # tool request before any output line
        ProcessState.WAITING_PERMISSION,
        *_TERMINAL,
    },
    ProcessState.STREAMING: {
        ProcessState.WAITING_PERMISSION,
        *_TERMINAL,
    },
    ProcessState.WAITING_PERMISSION: {
        ProcessState.STREAMING,
        *_TERMINAL,
    },
    ProcessState.COMPLETED: {ProcessState.IDLE},
    ProcessState.ERRORED: {ProcessState.IDLE},
    ProcessState.STOPPED: {ProcessState.IDLE},
}

ACTIVE_STATES: frozenset[ProcessState] = frozenset({
    ProcessState.STARTING,
    ProcessState.STREAMING,
    ProcessState.WAITING_PERMISSION,
})


def validate_transition(current: ProcessState, target: ProcessState) -> None:
    """Validate a state transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise InvalidTransitionError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
