"""Core enums for the session controller.

Single source of truth for turn, process and permission states so that
persistence, the controller and the TUI agree on string values.
"""
from __future__ import annotations

from enum import Enum


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TurnStatus(str, Enum):
    """Turn lifecycle. Every value except STREAMING is terminal."""
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not TurnStatus.STREAMING


class ProcessState(str, Enum):
    """Controller states. See lifecycle.py for transition rules."""
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    WAITING_PERMISSION = "waiting_permission"
    COMPLETED = "completed"
    ERRORED = "errored"
    STOPPED = "stopped"


class ApprovalMode(str, Enum):
    ASK_EVERY_TIME = "ask-every-time"
    AUTO_APPROVE_SAFE = "auto-approve-safe"
    AUTO_APPROVE_ALL = "auto-approve-all"

    @property
    def auto_approve_flag(self) -> bool:
        """Whether the CLI itself should be told to skip permission prompts."""
        return self is ApprovalMode.AUTO_APPROVE_ALL


class Decision(str, Enum):
    AUTO = "auto"
    CONFIRM = "confirm"


class ToolClass(str, Enum):
    READ_ONLY = "read_only"
    MUTATING = "mutating"


class ToolApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    AUTO_APPROVED = "auto_approved"


class DenyPolicy(str, Enum):
    """What a denied tool action does to the rest of the turn."""
    SKIP_ACTION = "skip_action"
    STOP_TURN = "stop_turn"
