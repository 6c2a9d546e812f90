"""Agent process abstraction and the Claude Code CLI implementation."""
from .base import AgentProcess, StartOptions
from .claude_process import ClaudeProcess, final_output
from .discovery import (
    ClaudeInstallStatus,
    build_clean_env,
    check_claude_installed,
    find_claude_binary,
)

__all__ = [
    "AgentProcess",
    "StartOptions",
    "ClaudeProcess",
    "final_output",
    "ClaudeInstallStatus",
    "build_clean_env",
    "check_claude_installed",
    "find_claude_binary",
]
