"""Session controller: one in-flight agent invocation per project.

Drives the turn state machine:

    submit() ──> STARTING ──first chunk──> STREAMING ──completed──> COMPLETED | ERRORED ──> IDLE
                    │                          │
                    │                          ├──tool needs confirm──> WAITING_PERMISSION
                    │                          │
                    └────────── stop() ────────┴──> STOPPED ──> IDLE

Events arrive through the EventChannel subscription opened by submit().
Every way out of an active state goes through _finish(), which disposes
the subscription before the assistant turn is finalized, so a late chunk
can never land on a terminal turn.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ccdesk.adapters.event_channel import Subscription
from ccdesk.adapters.events import (
    AgentEvent,
    StreamChunk,
    StreamCompleted,
    StreamStderr,
    ToolRequest,
)
from ccdesk.shared.models.turn import ToolAction, Turn, new_assistant_turn, new_user_turn
from ccdesk.shared.services.message_store import MessageStore
from ccdesk.shared.services.project import project_key

from .config import ControllerConfig
from .errors import (
    NoProjectError,
    PermissionRequestNotFoundError,
    RetryNotAllowedError,
    SessionBusyError,
    StartFailure,
)
from .lifecycle import ACTIVE_STATES, validate_transition
from .models import (
    ApprovalMode,
    Decision,
    DenyPolicy,
    ProcessState,
    ToolApprovalStatus,
    TurnRole,
    TurnStatus,
)
from .permission_gate import decide, parse_approval_mode
from .providers.base import AgentProcess, StartOptions

logger = logging.getLogger(__name__)

NO_OUTPUT_PLACEHOLDER = "(no output)"
ERROR_PREFIX = "Error: "
THINKING_ACTIVITY = "Claude is thinking..."
_ACTIVITY_MAX_CHARS = 120

StateCallback = Callable[[ProcessState], Any]
ActivityCallback = Callable[[str], Any]
TurnCallback = Callable[[Turn], Any]
PermissionRequestCallback = Callable[[Turn, ToolAction], Any]


@dataclass
class Session:
    """Live binding between one submitted prompt and one process invocation."""
    session_id: str
    project_id: str
    assistant_turn_id: str
    approval_mode: ApprovalMode
    subscription: Subscription | None = field(default=None, repr=False)
    # Tool actions awaiting approve/deny, keyed by ToolAction.id.
    pending_actions: dict[str, ToolAction] = field(default_factory=dict)
    stderr_lines: list[str] = field(default_factory=list, repr=False)


def _activity_text(line: str) -> str:
    line = line.strip()
    if len(line) > _ACTIVITY_MAX_CHARS:
        return line[: _ACTIVITY_MAX_CHARS - 3] + "..."
    return line


class SessionController:
    """Owns the one active Session for the selected project."""

    def __init__(
        self,
        store: MessageStore,
        process: AgentProcess,
        *,
        config: ControllerConfig | None = None,
        on_process_state_change: StateCallback | None = None,
        on_activity: ActivityCallback | None = None,
        on_turn_update: TurnCallback | None = None,
        on_permission_request: PermissionRequestCallback | None = None,
    ) -> None:
        self._store = store
        self._process = process
        self._channel = process.channel
        self._config = config or ControllerConfig()
        self._approval_mode = self._config.approval_mode
        self._state = ProcessState.IDLE
        self._session: Session | None = None
        self._project_dir: Path | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._watchdog: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task] = set()

        self.on_process_state_change = on_process_state_change
        self.on_activity = on_activity
        self.on_turn_update = on_turn_update
        self.on_permission_request = on_permission_request

    # ── Read-only views ──

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._state in ACTIVE_STATES

    @property
    def turns(self) -> list[Turn]:
        return self._store.turns

    @property
    def project_id(self) -> str | None:
        return self._store.project_id

    @property
    def project_dir(self) -> Path | None:
        return self._project_dir

    @property
    def approval_mode(self) -> ApprovalMode:
        return self._approval_mode

    @property
    def config(self) -> ControllerConfig:
        return self._config

    # ── Commands ──

    def select_project(self, project_dir: Path | str) -> list[Turn]:
        """Switch to a project and restore its history."""
        self._require_idle("switch project")
        path = Path(project_dir).expanduser().resolve()
        turns = self._store.select_project(project_key(path))
        self._project_dir = path
        return turns

    def set_approval_mode(self, mode: ApprovalMode | str) -> ApprovalMode:
        """Takes effect for the next submitted prompt."""
        self._approval_mode = parse_approval_mode(mode)
        logger.info("Approval mode set to %s", self._approval_mode.value)
        return self._approval_mode

    def clear_history(self) -> None:
        self._require_idle("clear history")
        self._store.clear()

    async def submit(self, prompt: str) -> Turn:
        """Start one agent invocation for a prompt.

        Returns the assistant turn as soon as the process start has been
        acknowledged or rejected. A start failure does not raise: the
        turn comes back finalized as an error. Cancelling submit() while
        the start is pending finalizes the turn as stopped.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("Prompt is empty")
        self._require_idle("submit")
        if self._store.project_id is None or self._project_dir is None:
            raise NoProjectError()

        user_turn = self._store.append_turn(new_user_turn(prompt))
        assistant_turn = self._store.append_turn(new_assistant_turn())
        session = Session(
            session_id=self._process.new_session_id(),
            project_id=self._store.project_id,
            assistant_turn_id=assistant_turn.id,
            approval_mode=self._approval_mode,
        )
        self._session = session
        self._idle.clear()
        session.subscription = self._channel.subscribe(
            session.session_id,
            {
                "chunk": self._on_chunk,
                "completed": self._on_completed,
                "stderr": self._on_stderr,
                "tool_request": self._on_tool_request,
            },
        )
        self._set_state(ProcessState.STARTING)
        self._notify_turn(user_turn)
        self._notify_turn(assistant_turn)
        self._emit_activity(THINKING_ACTIVITY)
        logger.info(
            "Submitting prompt (session=%s project=%s mode=%s chars=%d)",
            session.session_id, session.project_id,
            session.approval_mode.value, len(prompt),
        )

        options = StartOptions(
            auto_approve=session.approval_mode.auto_approve_flag,
            cwd=str(self._project_dir),
            session_id=session.session_id,
        )
        try:
            await self._process.start(prompt, options)
        except StartFailure as exc:
            logger.warning("Agent start failed (session=%s): %s", session.session_id, exc.reason)
            self._finish(session, exc.reason, TurnStatus.ERROR, ProcessState.ERRORED)
            return assistant_turn
        except asyncio.CancelledError:
            logger.info("Submit cancelled while starting (session=%s)", session.session_id)
            self._finish(session, "", TurnStatus.STOPPED, ProcessState.STOPPED)
            self._spawn(self._cancel_process(session))
            raise
        except Exception as exc:
            logger.exception("Agent start raised (session=%s)", session.session_id)
            self._finish(
                session, f"Failed to start: {exc}", TurnStatus.ERROR, ProcessState.ERRORED,
            )
            await self._cancel_process(session)
            return assistant_turn

        if self._session is not session:
            # stop() won the race while start() was pending.
            await self._cancel_process(session)
            return assistant_turn
        self._arm_watchdog(session)
        return assistant_turn

    async def stop(self) -> Turn | None:
        """Stop the active turn. No-op (returns None) when idle.

        Local state is final before the termination request is awaited;
        nothing the process emits afterwards is applied.
        """
        session = self._session
        if session is None or not self.is_active:
            return None
        turn = self._store.get_turn(session.assistant_turn_id)
        logger.info("Stop requested (session=%s state=%s)", session.session_id, self._state.value)
        if session.subscription is not None:
            session.subscription.dispose()
        self._finish(session, turn.content, TurnStatus.STOPPED, ProcessState.STOPPED)
        await self._cancel_process(session)
        return turn

    async def retry(self, turn_id: str) -> Turn:
        """Re-submit the prompt that produced a failed assistant turn.

        The failed turn stays in history unchanged.
        """
        turn = self._store.get_turn(turn_id)
        if turn.role is not TurnRole.ASSISTANT:
            raise RetryNotAllowedError(turn_id, "not an assistant turn")
        if turn.status is not TurnStatus.ERROR:
            raise RetryNotAllowedError(turn_id, f"status is {turn.status.value}, not error")
        user_turn = self._store.previous_user_turn(turn_id)
        if user_turn is None:
            raise RetryNotAllowedError(turn_id, "no user prompt precedes it")
        logger.info("Retrying turn %s with prompt from %s", turn_id, user_turn.id)
        return await self.submit(user_turn.content)

    def last_failed_turn(self) -> Turn | None:
        for turn in reversed(self._store.turns):
            if turn.role is TurnRole.ASSISTANT:
                return turn if turn.status is TurnStatus.ERROR else None
        return None

    async def resolve_permission(self, action_id: str, approved: bool) -> ToolAction:
        """Apply the user's approve/deny to a tool action awaiting confirmation."""
        session = self._session
        if session is None or action_id not in session.pending_actions:
            raise PermissionRequestNotFoundError(action_id)
        action = session.pending_actions.pop(action_id)
        action.status = (
            ToolApprovalStatus.APPROVED if approved else ToolApprovalStatus.DENIED
        )
        logger.info(
            "Tool action %s (%s) %s", action.id, action.tool,
            "approved" if approved else "denied",
        )
        await self._reply_permission(session, action, approved)
        if self._session is not session:
            return action

        if not approved and self._config.deny_policy is DenyPolicy.STOP_TURN:
            await self.stop()
            return action

        if not session.pending_actions and self._state is ProcessState.WAITING_PERMISSION:
            self._set_state(ProcessState.STREAMING)
            self._arm_watchdog(session)
        self._notify_turn(self._store.get_turn(session.assistant_turn_id))
        return action

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def close(self) -> None:
        await self.stop()
        self._channel.close()
        await self._process.shutdown()

    # ── Event handlers (called by the subscription pump, in order) ──

    def _session_for(self, event: AgentEvent) -> Session | None:
        session = self._session
        if session is None or event.session_id != session.session_id:
            return None
        return session

    def _on_chunk(self, event: StreamChunk) -> None:
        session = self._session_for(event)
        if session is None:
            return
        turn = self._store.get_turn(session.assistant_turn_id)
        if self._state is ProcessState.STARTING:
            self._set_state(ProcessState.STREAMING)
        turn.append(event.text)
        self._arm_watchdog(session)
        self._emit_activity(_activity_text(event.text))
        self._notify_turn(turn)

    def _on_stderr(self, event: StreamStderr) -> None:
        session = self._session_for(event)
        if session is None:
            return
        session.stderr_lines.append(event.text)
        logger.debug("agent stderr (session=%s): %s", session.session_id, event.text)
        self._arm_watchdog(session)

    def _on_completed(self, event: StreamCompleted) -> None:
        session = self._session_for(event)
        if session is None:
            return
        turn = self._store.get_turn(session.assistant_turn_id)
        if event.full_output.strip():
            content = event.full_output
        else:
            content = turn.content or NO_OUTPUT_PLACEHOLDER
        if event.success:
            self._finish(session, content, TurnStatus.COMPLETE, ProcessState.COMPLETED)
        else:
            self._finish(
                session, f"{ERROR_PREFIX}{content}", TurnStatus.ERROR, ProcessState.ERRORED,
            )

    async def _on_tool_request(self, event: ToolRequest) -> None:
        session = self._session_for(event)
        if session is None:
            return
        turn = self._store.get_turn(session.assistant_turn_id)
        action = ToolAction(
            tool=event.tool,
            description=event.description or event.tool,
            input=event.input,
            request_id=event.request_id or None,
        )
        turn.add_tool_action(action)
        decision = decide(action, session.approval_mode)
        logger.info(
            "Tool request %s (%s) -> %s under %s",
            action.id, action.tool, decision.value, session.approval_mode.value,
        )

        if decision is Decision.AUTO:
            action.status = ToolApprovalStatus.AUTO_APPROVED
            self._notify_turn(turn)
            await self._reply_permission(session, action, True)
            return

        session.pending_actions[action.id] = action
        if self._state in (ProcessState.STARTING, ProcessState.STREAMING):
            self._set_state(ProcessState.WAITING_PERMISSION)
        # Waiting on the user is not a stall.
        self._cancel_watchdog()
        self._notify_turn(turn)
        self._call_observer(self.on_permission_request, turn, action)

    # ── Internals ──

    def _finish(
        self,
        session: Session,
        content: str,
        status: TurnStatus,
        report_state: ProcessState,
    ) -> None:
        """Single exit from an active session."""
        if self._session is not session:
            return
        self._cancel_watchdog()
        if session.subscription is not None:
            session.subscription.dispose()
        turn = self._store.get_turn(session.assistant_turn_id)
        for action in session.pending_actions.values():
            action.status = ToolApprovalStatus.DENIED
        session.pending_actions.clear()
        self._store.finalize_turn(session.assistant_turn_id, content, status)
        self._session = None
        self._set_state(report_state)
        self._set_state(ProcessState.IDLE)
        self._emit_activity("")
        self._notify_turn(turn)
        self._idle.set()

    async def _cancel_process(self, session: Session) -> None:
        try:
            await self._process.cancel(session.session_id)
        except Exception:
            logger.warning(
                "Cancel request failed (session=%s)", session.session_id, exc_info=True,
            )

    async def _reply_permission(
        self, session: Session, action: ToolAction, approved: bool,
    ) -> None:
        try:
            await self._process.respond_permission(
                session.session_id, action.request_id or action.id, approved,
            )
        except Exception:
            logger.warning(
                "Permission reply for %s failed (session=%s)",
                action.id, session.session_id, exc_info=True,
            )

    def _arm_watchdog(self, session: Session) -> None:
        self._cancel_watchdog()
        if not self._config.stall_timeout_enabled:
            return
        if self._state is ProcessState.WAITING_PERMISSION:
            return
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(
            self._config.stall_timeout_seconds, self._on_stall, session,
        )

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_stall(self, session: Session) -> None:
        self._watchdog = None
        if self._session is not session or not self.is_active:
            return
        timeout = self._config.stall_timeout_seconds
        logger.warning(
            "No output for %gs (session=%s); stopping", timeout, session.session_id,
        )
        # Nothing may land after the note.
        if session.subscription is not None:
            session.subscription.dispose()
        turn = self._store.get_turn(session.assistant_turn_id)
        turn.append(f"[stopped: no output for {timeout:g}s]")
        self._finish(session, turn.content, TurnStatus.STOPPED, ProcessState.STOPPED)
        self._spawn(self._cancel_process(session))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _require_idle(self, command: str) -> None:
        if self._state is not ProcessState.IDLE:
            raise SessionBusyError(self._state.value, command)

    def _set_state(self, target: ProcessState) -> None:
        validate_transition(self._state, target)
        logger.debug("State %s -> %s", self._state.value, target.value)
        self._state = target
        self._call_observer(self.on_process_state_change, target)

    def _emit_activity(self, text: str) -> None:
        self._call_observer(self.on_activity, text)

    def _notify_turn(self, turn: Turn) -> None:
        self._call_observer(self.on_turn_update, turn)

    @staticmethod
    def _call_observer(callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Observer %r raised; ignoring", callback)
