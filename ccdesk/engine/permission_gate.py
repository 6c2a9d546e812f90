"""Permission gate — decides whether a tool action needs confirmation.

decide() is a pure function of (tool, approval mode). The tool partition
is static; anything not known to be read-only is treated as mutating so
that new or misspelled tools always ask first.
"""
from __future__ import annotations

import re
from typing import Any, Union

from .models import ApprovalMode, Decision, ToolClass

# Normalized identifiers (lowercase, separators dropped).
READ_ONLY_TOOLS: frozenset[str] = frozenset({
    "read",
    "glob",
    "grep",
    "ls",
    "websearch",
    "webfetch",
    "notebookread",
    "todoread",
})

MUTATING_TOOLS: frozenset[str] = frozenset({
    "bash",
    "write",
    "edit",
    "multiedit",
    "notebookedit",
    "agent",
    "task",
    "todowrite",
})

_SEPARATORS_RE = re.compile(r"[\s_\-]+")


def normalize_tool(tool: str) -> str:
    """Fold CLI spellings ("WebFetch", "web_fetch", "web-fetch") together."""
    return _SEPARATORS_RE.sub("", (tool or "").strip()).lower()


def classify_tool(tool: str) -> ToolClass:
    if normalize_tool(tool) in READ_ONLY_TOOLS:
        return ToolClass.READ_ONLY
    return ToolClass.MUTATING


def parse_approval_mode(value: Union[str, ApprovalMode]) -> ApprovalMode:
    """Accept enum members and hyphen/underscore spellings."""
    if isinstance(value, ApprovalMode):
        return value
    key = (value or "").strip().lower().replace("_", "-")
    for mode in ApprovalMode:
        if mode.value == key:
            return mode
    valid = ", ".join(m.value for m in ApprovalMode)
    raise ValueError(f"Unknown approval mode {value!r} (expected one of: {valid})")


def decide(action: Any, mode: ApprovalMode) -> Decision:
    """Map a proposed tool action and approval mode to auto or confirm.

    ``action`` is a tool identifier or anything with a ``tool`` attribute
    (e.g. a ToolAction).
    """
    tool = action if isinstance(action, str) else getattr(action, "tool", "")
    if mode is ApprovalMode.AUTO_APPROVE_ALL:
        return Decision.AUTO
    if mode is ApprovalMode.AUTO_APPROVE_SAFE:
        if classify_tool(tool) is ToolClass.READ_ONLY:
            return Decision.AUTO
        return Decision.CONFIRM
    return Decision.CONFIRM
