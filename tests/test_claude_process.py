"""Tests for the Claude Code CLI process adapter."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import AsyncMock, patch

import pytest

from ccdesk.adapters.event_channel import EventChannel
from ccdesk.adapters.events import StreamChunk, StreamCompleted, StreamStderr
from ccdesk.engine.errors import StartFailure
from ccdesk.engine.providers.base import StartOptions
from ccdesk.engine.providers.claude_process import (
    EXITED_WITH_ERROR,
    SKIP_PERMISSIONS_FLAG,
    ClaudeProcess,
    final_output,
)
from ccdesk.engine.providers.discovery import NESTED_SESSION_VARS, build_clean_env

_MODULE = "ccdesk.engine.providers.claude_process"


def _reader(lines: list[str]) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data("".join(lines).encode("utf-8"))
    reader.feed_eof()
    return reader


class _BrokenReader:
    async def readuntil(self, separator: bytes = b"\n") -> bytes:
        raise RuntimeError("pipe went away")


class _FakeProc:
    def __init__(self, stdout, stderr: list[str], returncode: int) -> None:
        self.pid = 4242
        self.stdout = _reader(stdout) if isinstance(stdout, list) else stdout
        self.stderr = _reader(stderr)
        self.returncode: int | None = None
        self._exit_code = returncode

    async def wait(self) -> int:
        self.returncode = self._exit_code
        return self._exit_code


def _collecting_channel(session_id: str) -> tuple[EventChannel, list]:
    channel = EventChannel()
    events: list = []
    channel.subscribe(
        session_id,
        {"chunk": events.append, "stderr": events.append, "completed": events.append},
    )
    return channel, events


async def _run(proc: _FakeProc, *, auto_approve: bool = False):
    channel, events = _collecting_channel("s1")
    process = ClaudeProcess(channel, command="claude")
    spawn = AsyncMock(return_value=proc)
    with patch(f"{_MODULE}.find_claude_binary", return_value="/usr/bin/claude"), \
            patch(f"{_MODULE}.build_clean_env", return_value={"PATH": "/usr/bin"}), \
            patch(f"{_MODULE}.asyncio.create_subprocess_exec", spawn):
        session_id = await process.start(
            "explain this", StartOptions(auto_approve=auto_approve, cwd="/work", session_id="s1"),
        )
        await process._readers[session_id]
    await channel.flush()
    return session_id, spawn, events


def test_final_output() -> None:
    assert final_output(True, "  done \n", "") == "done"
    assert final_output(False, "partial", "trace") == "partial"
    assert final_output(False, "", " boom \n") == "boom"
    assert final_output(False, "  ", "") == EXITED_WITH_ERROR


def test_build_args_adds_skip_flag_only_when_auto_approved() -> None:
    process = ClaudeProcess(EventChannel())

    assert process.build_args("claude", "hi", StartOptions()) == ["claude", "-p", "hi"]
    assert process.build_args("claude", "hi", StartOptions(auto_approve=True)) == [
        "claude", "-p", "hi", SKIP_PERMISSIONS_FLAG,
    ]


@pytest.mark.asyncio
async def test_stdout_lines_stream_as_chunks_then_completed() -> None:
    proc = _FakeProc(["line one\n", "line two\n"], [], returncode=0)

    session_id, spawn, events = await _run(proc)

    assert session_id == "s1"
    args, kwargs = spawn.call_args
    assert args == ("/usr/bin/claude", "-p", "explain this")
    assert kwargs["cwd"] == "/work"
    assert kwargs["env"] == {"PATH": "/usr/bin"}
    assert [type(e) for e in events] == [StreamChunk, StreamChunk, StreamCompleted]
    assert [e.text for e in events[:2]] == ["line one", "line two"]
    assert events[-1].success is True
    assert events[-1].full_output == "line one\nline two"


@pytest.mark.asyncio
async def test_failed_run_reports_stderr() -> None:
    proc = _FakeProc([], ["Error: not logged in\n"], returncode=1)

    _, _, events = await _run(proc)

    assert isinstance(events[0], StreamStderr)
    completed = events[-1]
    assert isinstance(completed, StreamCompleted)
    assert completed.success is False
    assert completed.full_output == "Error: not logged in"


@pytest.mark.asyncio
async def test_line_longer_than_stream_limit_is_one_chunk() -> None:
    long_line = "x" * 100_000
    proc = _FakeProc([long_line + "\n", "done\n"], ["w" * 70_000 + "\n"], returncode=0)

    _, _, events = await _run(proc)

    chunks = [e.text for e in events if isinstance(e, StreamChunk)]
    assert chunks == [long_line, "done"]
    assert [len(e.text) for e in events if isinstance(e, StreamStderr)] == [70_000]
    assert isinstance(events[-1], StreamCompleted)
    assert events[-1].success is True


@pytest.mark.asyncio
async def test_unterminated_last_line_is_still_streamed() -> None:
    proc = _FakeProc(["first\n", "no newline"], [], returncode=0)

    _, _, events = await _run(proc)

    assert [e.text for e in events if isinstance(e, StreamChunk)] == ["first", "no newline"]


@pytest.mark.asyncio
async def test_reader_error_still_completes_and_reaps() -> None:
    proc = _FakeProc(_BrokenReader(), [], returncode=-9)

    with patch.object(ClaudeProcess, "_signal_group") as signal_group:
        _, _, events = await _run(proc)

    signal_group.assert_called_once()
    assert proc.returncode == -9
    completed = events[-1]
    assert isinstance(completed, StreamCompleted)
    assert completed.success is False
    assert "pipe went away" in completed.full_output


@pytest.mark.asyncio
async def test_start_fails_when_cli_missing() -> None:
    process = ClaudeProcess(EventChannel(), command="claude")
    with patch(f"{_MODULE}.find_claude_binary", return_value=None):
        with pytest.raises(StartFailure, match="not found"):
            await process.start("hi", StartOptions(session_id="s1"))


@pytest.mark.asyncio
async def test_spawn_error_becomes_start_failure() -> None:
    process = ClaudeProcess(EventChannel())
    spawn = AsyncMock(side_effect=PermissionError("denied"))
    with patch(f"{_MODULE}.find_claude_binary", return_value="/usr/bin/claude"), \
            patch(f"{_MODULE}.build_clean_env", return_value={}), \
            patch(f"{_MODULE}.asyncio.create_subprocess_exec", spawn):
        with pytest.raises(StartFailure, match="Failed to start"):
            await process.start("hi", StartOptions(session_id="s1"))


@pytest.mark.asyncio
async def test_cancel_unknown_session_is_a_no_op() -> None:
    process = ClaudeProcess(EventChannel())
    await process.cancel("never-started")


def test_clean_env_drops_nested_session_markers() -> None:
    base = {var: "1" for var in NESTED_SESSION_VARS}
    base["HOME"] = "/home/dev"
    with patch(
        "ccdesk.engine.providers.discovery.resolve_full_path", return_value="/opt/bin",
    ):
        env = build_clean_env(base)

    assert env == {"HOME": "/home/dev", "PATH": "/opt/bin"}


@pytest.mark.asyncio
async def test_null_byte_in_arguments_becomes_start_failure() -> None:
    process = ClaudeProcess(EventChannel())
    spawn = AsyncMock(side_effect=ValueError("embedded null byte"))
    with patch(f"{_MODULE}.find_claude_binary", return_value="/usr/bin/claude"), \
            patch(f"{_MODULE}.build_clean_env", return_value={}), \
            patch(f"{_MODULE}.asyncio.create_subprocess_exec", spawn):
        with pytest.raises(StartFailure, match="embedded null byte"):
            await process.start("hi\x00there", StartOptions(session_id="s1"))

    assert process._procs == {}


@pytest.mark.asyncio
async def test_binary_lookup_runs_off_the_event_loop_thread() -> None:
    loop_thread = threading.get_ident()
    lookup_threads: list[int] = []

    def _lookup(command: str) -> str | None:
        lookup_threads.append(threading.get_ident())
        return None

    process = ClaudeProcess(EventChannel())
    with patch(f"{_MODULE}.find_claude_binary", side_effect=_lookup):
        with pytest.raises(StartFailure):
            await process.start("hi", StartOptions(session_id="s1"))

    assert len(lookup_threads) == 1
    assert lookup_threads[0] != loop_thread
