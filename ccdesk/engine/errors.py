"""Exception hierarchy for the session controller.

Specific exceptions for each failure mode. Command methods raise these
at the boundary; only start failures are recovered locally (the turn is
finalized as an error instead of propagating).
"""
from __future__ import annotations


class ControllerError(Exception):
    """Base exception for all session controller errors."""


class StartFailure(ControllerError):
    """The external agent process could not be launched."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class SessionBusyError(ControllerError):
    """A command that needs an idle controller was issued mid-session."""
    def __init__(self, state: str, command: str = "submit"):
        self.state = state
        self.command = command
        super().__init__(
            f"Cannot {command} while a session is {state}; "
            f"stop or wait for it to finish first"
        )


class NoProjectError(ControllerError):
    """No project has been selected."""
    def __init__(self) -> None:
        super().__init__("No project selected")


class TurnNotFoundError(ControllerError, KeyError):
    def __init__(self, turn_id: str):
        self.turn_id = turn_id
        super().__init__(f"Turn not found: {turn_id}")

    def __str__(self) -> str:
        return self.args[0]


class TurnFinalizedError(ControllerError):
    """Attempted to append to a turn that already reached a terminal status."""
    def __init__(self, turn_id: str):
        self.turn_id = turn_id
        super().__init__(f"Turn {turn_id} is terminal and can no longer change")


class RetryNotAllowedError(ControllerError):
    def __init__(self, turn_id: str, reason: str):
        self.turn_id = turn_id
        self.reason = reason
        super().__init__(f"Cannot retry turn {turn_id}: {reason}")


class InvalidTransitionError(ControllerError, ValueError):
    """Controller state machine was asked to make an illegal move."""


class PermissionRequestNotFoundError(ControllerError):
    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"No pending tool action with id {action_id}")
