"""Event types emitted by an agent process.

Each event corresponds to a dict published by a process adapter,
parsed into a typed dataclass for safe consumption by the controller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class AgentEvent:
    """Base event from an agent process."""
    event_type: str = ""
    session_id: str = ""


@dataclass
class StreamChunk(AgentEvent):
    event_type: str = "chunk"
    text: str = ""


@dataclass
class StreamCompleted(AgentEvent):
    event_type: str = "completed"
    success: bool = True
    full_output: str = ""


@dataclass
class StreamStderr(AgentEvent):
    event_type: str = "stderr"
    text: str = ""


@dataclass
class ToolRequest(AgentEvent):
    """The agent wants to run a side-effecting tool."""
    event_type: str = "tool_request"
    request_id: str = ""
    tool: str = ""
    description: str = ""
    input: str | None = None


_EVENT_MAP: dict[str, type[AgentEvent]] = {
    "chunk": StreamChunk,
    "completed": StreamCompleted,
    "stderr": StreamStderr,
    "tool_request": ToolRequest,
}

EVENT_TYPES: frozenset[str] = frozenset(_EVENT_MAP)


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> AgentEvent:
    """Convert a process adapter dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, AgentEvent)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
