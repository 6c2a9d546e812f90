"""Claude Code CLI process.

Runs `claude -p <prompt>` (print mode) once per prompt and streams its
stdout line by line. Uses asyncio.create_subprocess_exec (array-based,
no shell) and puts the child in its own process group so stop() can
take down any tools it spawned.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from ccdesk.adapters.events import StreamChunk, StreamCompleted, StreamStderr
from ccdesk.engine.errors import StartFailure

from .base import AgentProcess, StartOptions
from .discovery import build_clean_env, find_claude_binary

logger = logging.getLogger(__name__)

SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"
EXITED_WITH_ERROR = "Claude Code exited with an error."

_IS_WINDOWS = sys.platform == "win32"


def final_output(success: bool, stdout: str, stderr: str) -> str:
    """Text reported with completed.

    A failed run that printed nothing on stdout reports its stderr instead,
    or a fixed message if that is empty too.
    """
    if not success and not stdout.strip():
        return stderr.strip() or EXITED_WITH_ERROR
    return stdout.strip()


class ClaudeProcess(AgentProcess):
    """Agent process backed by the Claude Code CLI in print mode."""

    def __init__(
        self,
        channel,
        command: str = "claude",
        kill_grace_seconds: float = 3.0,
    ) -> None:
        super().__init__(channel)
        self._command = command
        self._kill_grace_seconds = kill_grace_seconds
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._readers: dict[str, asyncio.Task] = {}
        self._escalations: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return "claude"

    def is_available(self) -> bool:
        return find_claude_binary(self._command) is not None

    def build_args(self, binary: str, prompt: str, options: StartOptions) -> list[str]:
        args = [binary, "-p", prompt]
        if options.auto_approve:
            args.append(SKIP_PERMISSIONS_FLAG)
        return args

    async def start(self, prompt: str, options: StartOptions) -> str:
        # PATH discovery may run login shells; keep it off the event loop.
        binary = await asyncio.to_thread(find_claude_binary, self._command)
        if binary is None:
            raise StartFailure(
                f"Claude Code CLI '{self._command}' was not found. "
                f"Install it or set claude_command in the config."
            )

        session_id = options.session_id or self.new_session_id()
        if session_id in self._procs:
            raise StartFailure(f"Session {session_id} is already running")

        cmd = self.build_args(binary, prompt, options)
        env = await asyncio.to_thread(build_clean_env)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=options.cwd,
                env=env,
                start_new_session=not _IS_WINDOWS,
            )
        except (OSError, ValueError) as exc:
            # ValueError: embedded null byte in the prompt or cwd.
            raise StartFailure(f"Failed to start Claude Code: {exc}") from exc

        logger.info(
            "Claude Code started (pid=%d session=%s cwd=%s auto_approve=%s)",
            proc.pid, session_id, options.cwd, options.auto_approve,
        )
        self._procs[session_id] = proc
        self._readers[session_id] = asyncio.create_task(
            self._stream(session_id, proc), name=f"claude-reader-{session_id}",
        )
        return session_id

    @staticmethod
    async def _read_line_unbounded(stream: asyncio.StreamReader) -> bytes:
        """Read one newline-terminated line without the StreamReader limit.

        readline() raises ValueError once a line passes the 64 KiB buffer
        limit, which a single JSON or diff line from the CLI can do.
        Returns b"" at EOF.
        """
        chunks: list[bytes] = []
        while True:
            try:
                chunk = await stream.readuntil(b"\n")
                chunks.append(chunk)
                return b"".join(chunks)
            except asyncio.LimitOverrunError as exc:
                chunk = await stream.read(exc.consumed)
                chunks.append(chunk)
            except asyncio.IncompleteReadError as exc:
                chunks.append(exc.partial)
                return b"".join(chunks)

    async def _drain_stderr(
        self, session_id: str, stream: asyncio.StreamReader,
    ) -> list[str]:
        lines: list[str] = []
        while True:
            raw = await self._read_line_unbounded(stream)
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            lines.append(line)
            self._publish(session_id, StreamStderr(text=line))
        return lines

    async def _stream(self, session_id: str, proc: asyncio.subprocess.Process) -> None:
        stderr_task = asyncio.create_task(self._drain_stderr(session_id, proc.stderr))
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        returncode: int | None = None
        read_error: str | None = None
        try:
            while True:
                raw = await self._read_line_unbounded(proc.stdout)
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                stdout_lines.append(line)
                self._publish(session_id, StreamChunk(text=line))

            returncode = await proc.wait()
            stderr_lines = await stderr_task
        except asyncio.CancelledError:
            stderr_task.cancel()
            raise
        except Exception as exc:
            logger.exception("Reading Claude Code output failed (session=%s)", session_id)
            read_error = f"Failed to read Claude Code output: {exc}"
            stderr_task.cancel()
            await self._reap(proc)
            await asyncio.gather(stderr_task, return_exceptions=True)
        finally:
            self._procs.pop(session_id, None)
            self._readers.pop(session_id, None)

        success = read_error is None and returncode == 0
        logger.info(
            "Claude Code exited (session=%s rc=%s lines=%d)",
            session_id, returncode, len(stdout_lines),
        )
        self._publish(
            session_id,
            StreamCompleted(
                success=success,
                full_output=read_error or final_output(
                    success, "\n".join(stdout_lines), "\n".join(stderr_lines),
                ),
            ),
        )

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        """Kill a child whose output can no longer be read, then wait for it."""
        if proc.returncode is None:
            if _IS_WINDOWS:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            else:
                self._signal_group(proc, signal.SIGKILL)
        await proc.wait()

    async def cancel(self, session_id: str) -> None:
        proc = self._procs.get(session_id)
        if proc is None or proc.returncode is not None:
            logger.debug("cancel: no running process for session %s", session_id)
            return
        logger.info("Stopping Claude Code (pid=%d session=%s)", proc.pid, session_id)
        await self._terminate(proc)
        task = asyncio.create_task(self._escalate(proc))
        self._escalations.add(task)
        task.add_done_callback(self._escalations.discard)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if _IS_WINDOWS:
            # Kill the whole tree; the CLI spawns node + tool children.
            killer = await asyncio.create_subprocess_exec(
                "taskkill", "/PID", str(proc.pid), "/T", "/F",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
            return
        self._signal_group(proc, signal.SIGTERM)

    async def _escalate(self, proc: asyncio.subprocess.Process) -> None:
        if self._kill_grace_seconds <= 0 or _IS_WINDOWS:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Claude Code (pid=%d) ignored SIGTERM for %.1fs; sending SIGKILL",
                proc.pid, self._kill_grace_seconds,
            )
            self._signal_group(proc, signal.SIGKILL)

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # Group already reaped and pid reused elsewhere; fall back to the child.
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass

    async def shutdown(self) -> None:
        for session_id in list(self._procs):
            await self.cancel(session_id)
        readers = list(self._readers.values())
        for task in readers:
            task.cancel()
        for task in list(self._escalations):
            task.cancel()
        if readers:
            await asyncio.gather(*readers, return_exceptions=True)
