"""Tests for ordered, session-scoped event delivery."""

from __future__ import annotations

import logging

import pytest

from ccdesk.adapters.event_channel import EventChannel, Subscription
from ccdesk.adapters.events import (
    StreamChunk,
    StreamCompleted,
    ToolRequest,
    dict_to_event,
    event_to_dict,
)


@pytest.mark.asyncio
async def test_events_delivered_in_emission_order() -> None:
    channel = EventChannel()
    seen: list[str] = []

    async def _on_completed(event: StreamCompleted) -> None:
        seen.append(f"done:{event.full_output}")

    channel.subscribe(
        "s1",
        {
            "chunk": lambda e: seen.append(e.text),
            "completed": _on_completed,
        },
    )
    for text in ("a", "b", "c"):
        assert channel.publish("s1", StreamChunk(text=text))
    channel.publish("s1", StreamCompleted(full_output="abc"))
    await channel.flush()

    assert seen == ["a", "b", "c", "done:abc"]


@pytest.mark.asyncio
async def test_events_for_other_sessions_are_dropped() -> None:
    channel = EventChannel()
    seen: list[str] = []
    channel.subscribe("s1", {"chunk": lambda e: seen.append(e.text)})

    assert channel.publish("other", StreamChunk(text="stray")) is False
    await channel.flush()

    assert seen == []


@pytest.mark.asyncio
async def test_nothing_is_accepted_after_completed() -> None:
    channel = EventChannel()
    seen: list[str] = []
    sub = channel.subscribe(
        "s1",
        {"chunk": lambda e: seen.append(e.text), "completed": lambda e: seen.append("done")},
    )

    channel.publish("s1", StreamCompleted())
    assert sub.active is False
    assert channel.publish("s1", StreamChunk(text="late")) is False
    await channel.flush()

    assert seen == ["done"]


@pytest.mark.asyncio
async def test_new_subscription_disposes_previous_one() -> None:
    channel = EventChannel()
    old_seen: list[str] = []
    old = channel.subscribe("s1", {"chunk": lambda e: old_seen.append(e.text)})

    new = channel.subscribe("s2", {"chunk": lambda e: None})

    assert old.disposed
    assert channel.current is new
    assert channel.publish("s1", StreamChunk(text="late")) is False
    await channel.flush()
    assert old_seen == []


@pytest.mark.asyncio
async def test_dispose_from_handler_stops_delivery() -> None:
    channel = EventChannel()
    seen: list[str] = []

    def _on_chunk(event: StreamChunk) -> None:
        seen.append(event.text)
        channel.current.dispose()

    channel.subscribe("s1", {"chunk": _on_chunk})
    channel.publish("s1", StreamChunk(text="first"))
    channel.publish("s1", StreamChunk(text="second"))
    await channel.flush()

    assert seen == ["first"]


@pytest.mark.asyncio
async def test_handler_error_is_logged_and_delivery_continues(caplog) -> None:
    channel = EventChannel()
    seen: list[str] = []

    def _on_chunk(event: StreamChunk) -> None:
        if event.text == "bad":
            raise RuntimeError("handler broke")
        seen.append(event.text)

    channel.subscribe("s1", {"chunk": _on_chunk})
    with caplog.at_level(logging.ERROR):
        channel.publish("s1", StreamChunk(text="bad"))
        channel.publish("s1", StreamChunk(text="good"))
        await channel.flush()

    assert seen == ["good"]
    assert "handler broke" in caplog.text


@pytest.mark.asyncio
async def test_unknown_handler_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        Subscription("s1", {"chunks": lambda e: None})


@pytest.mark.asyncio
async def test_publish_accepts_wire_dicts() -> None:
    channel = EventChannel()
    seen = []
    channel.subscribe("s1", {"tool_request": seen.append})

    channel.publish(
        "s1",
        {"event": "tool_request", "request_id": "r1", "tool": "Bash", "input": "ls"},
    )
    await channel.flush()

    assert len(seen) == 1
    assert isinstance(seen[0], ToolRequest)
    assert seen[0].session_id == "s1"
    assert seen[0].tool == "Bash"


def test_event_dict_conversion_preserves_fields() -> None:
    event = StreamCompleted(session_id="s1", success=False, full_output="boom")
    data = event_to_dict(event)

    assert data == {"event": "completed", "session_id": "s1", "success": False, "full_output": "boom"}
    assert dict_to_event(data) == event


def test_unknown_wire_event_becomes_base_event() -> None:
    event = dict_to_event({"event": "heartbeat", "session_id": "s1", "extra": 1})
    assert event.event_type == "heartbeat"
    assert event.session_id == "s1"
