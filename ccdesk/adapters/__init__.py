"""Adapters package - Bridge between agent processes and the controller.

Event types emitted by agent processes and the channel that delivers
them, in order, to the one live session subscription.
"""
from __future__ import annotations

__all__ = [
    "EventChannel",
    "Subscription",
    "AgentEvent",
    "StreamChunk",
    "StreamCompleted",
    "StreamStderr",
    "ToolRequest",
]

from ccdesk.adapters.event_channel import EventChannel, Subscription
from ccdesk.adapters.events import (
    AgentEvent,
    StreamChunk,
    StreamCompleted,
    StreamStderr,
    ToolRequest,
)
