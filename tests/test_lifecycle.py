"""Tests for controller state transitions."""

import pytest

from ccdesk.engine.errors import InvalidTransitionError
from ccdesk.engine.lifecycle import (
    ACTIVE_STATES,
    VALID_TRANSITIONS,
    validate_transition,
)
from ccdesk.engine.models import ProcessState


def test_every_state_has_transitions() -> None:
    assert set(VALID_TRANSITIONS) == set(ProcessState)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (ProcessState.IDLE, ProcessState.STARTING),
        (ProcessState.STARTING, ProcessState.STREAMING),
        (ProcessState.STARTING, ProcessState.ERRORED),
        (ProcessState.STARTING, ProcessState.STOPPED),
        (ProcessState.STREAMING, ProcessState.WAITING_PERMISSION),
        (ProcessState.WAITING_PERMISSION, ProcessState.STREAMING),
        (ProcessState.STREAMING, ProcessState.COMPLETED),
        (ProcessState.COMPLETED, ProcessState.IDLE),
    ],
)
def test_valid_transitions(current: ProcessState, target: ProcessState) -> None:
    validate_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (ProcessState.IDLE, ProcessState.STREAMING),
        (ProcessState.STREAMING, ProcessState.STARTING),
        (ProcessState.COMPLETED, ProcessState.STREAMING),
        (ProcessState.STOPPED, ProcessState.STARTING),
    ],
)
def test_invalid_transitions(current: ProcessState, target: ProcessState) -> None:
    with pytest.raises(InvalidTransitionError):
        validate_transition(current, target)


def test_invalid_transition_is_value_error() -> None:
    with pytest.raises(ValueError, match="idle -> completed"):
        validate_transition(ProcessState.IDLE, ProcessState.COMPLETED)


def test_terminal_and_active_states_are_disjoint() -> None:
    terminal = {s for s, targets in VALID_TRANSITIONS.items() if targets == {ProcessState.IDLE}}
    assert terminal == {ProcessState.COMPLETED, ProcessState.ERRORED, ProcessState.STOPPED}
    assert not terminal & ACTIVE_STATES
    assert ProcessState.IDLE not in ACTIVE_STATES
