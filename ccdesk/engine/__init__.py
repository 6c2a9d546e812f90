"""CCDesk engine — session control for the Claude Code CLI."""
from .models import (
    ApprovalMode,
    Decision,
    DenyPolicy,
    ProcessState,
    ToolApprovalStatus,
    ToolClass,
    TurnRole,
    TurnStatus,
)
from .config import ControllerConfig
from .errors import (
    ControllerError,
    InvalidTransitionError,
    NoProjectError,
    PermissionRequestNotFoundError,
    RetryNotAllowedError,
    SessionBusyError,
    StartFailure,
    TurnFinalizedError,
    TurnNotFoundError,
)
from .permission_gate import classify_tool, decide, parse_approval_mode

__all__ = [
    # Controller (lazy import to avoid circular deps)
    "SessionController",
    "Session",
    # Models
    "ApprovalMode",
    "Decision",
    "DenyPolicy",
    "ProcessState",
    "ToolApprovalStatus",
    "ToolClass",
    "TurnRole",
    "TurnStatus",
    # Config
    "ControllerConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Permission gate
    "classify_tool",
    "decide",
    "parse_approval_mode",
    # Providers (lazy import)
    "AgentProcess",
    "ClaudeProcess",
    "StartOptions",
    # Errors
    "ControllerError",
    "InvalidTransitionError",
    "NoProjectError",
    "PermissionRequestNotFoundError",
    "RetryNotAllowedError",
    "SessionBusyError",
    "StartFailure",
    "TurnFinalizedError",
    "TurnNotFoundError",
]


def __getattr__(name: str):
    if name == "SessionController":
        from .session_controller import SessionController
        return SessionController
    if name == "Session":
        from .session_controller import Session
        return Session
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "AgentProcess":
        from .providers.base import AgentProcess
        return AgentProcess
    if name == "StartOptions":
        from .providers.base import StartOptions
        return StartOptions
    if name == "ClaudeProcess":
        from .providers.claude_process import ClaudeProcess
        return ClaudeProcess
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
