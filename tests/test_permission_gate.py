"""Tests for approval mode decisions."""

from __future__ import annotations

import pytest

from ccdesk.engine.models import ApprovalMode, Decision, ToolClass
from ccdesk.engine.permission_gate import (
    classify_tool,
    decide,
    normalize_tool,
    parse_approval_mode,
)
from ccdesk.shared.models.turn import ToolAction


@pytest.mark.parametrize(
    ("tool", "mode", "expected"),
    [
        ("Bash", ApprovalMode.ASK_EVERY_TIME, Decision.CONFIRM),
        ("Read", ApprovalMode.ASK_EVERY_TIME, Decision.CONFIRM),
        ("Read", ApprovalMode.AUTO_APPROVE_SAFE, Decision.AUTO),
        ("Grep", ApprovalMode.AUTO_APPROVE_SAFE, Decision.AUTO),
        ("Write", ApprovalMode.AUTO_APPROVE_SAFE, Decision.CONFIRM),
        ("Bash", ApprovalMode.AUTO_APPROVE_SAFE, Decision.CONFIRM),
        ("Bash", ApprovalMode.AUTO_APPROVE_ALL, Decision.AUTO),
        ("SomeNewTool", ApprovalMode.AUTO_APPROVE_ALL, Decision.AUTO),
    ],
)
def test_decide(tool: str, mode: ApprovalMode, expected: Decision) -> None:
    assert decide(tool, mode) is expected


def test_decide_is_deterministic() -> None:
    results = {decide("Edit", ApprovalMode.AUTO_APPROVE_SAFE) for _ in range(20)}
    assert results == {Decision.CONFIRM}


def test_decide_accepts_tool_action() -> None:
    action = ToolAction(tool="WebFetch", description="fetch docs")
    assert decide(action, ApprovalMode.AUTO_APPROVE_SAFE) is Decision.AUTO


def test_unknown_tools_are_mutating() -> None:
    assert classify_tool("mcp__github__create_issue") is ToolClass.MUTATING
    assert classify_tool("") is ToolClass.MUTATING


def test_tool_names_are_normalized() -> None:
    assert normalize_tool(" Web_Fetch ") == "webfetch"
    assert normalize_tool("notebook-read") == "notebookread"
    assert classify_tool("web-search") is ToolClass.READ_ONLY


def test_parse_approval_mode_spellings() -> None:
    assert parse_approval_mode("ask-every-time") is ApprovalMode.ASK_EVERY_TIME
    assert parse_approval_mode("AUTO_APPROVE_SAFE") is ApprovalMode.AUTO_APPROVE_SAFE
    assert parse_approval_mode(ApprovalMode.AUTO_APPROVE_ALL) is ApprovalMode.AUTO_APPROVE_ALL
    with pytest.raises(ValueError, match="Unknown approval mode"):
        parse_approval_mode("yolo")


def test_only_auto_approve_all_skips_cli_prompts() -> None:
    assert ApprovalMode.AUTO_APPROVE_ALL.auto_approve_flag is True
    assert ApprovalMode.AUTO_APPROVE_SAFE.auto_approve_flag is False
    assert ApprovalMode.ASK_EVERY_TIME.auto_approve_flag is False
