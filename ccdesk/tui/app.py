"""CCDesk TUI — Textual application class."""

from __future__ import annotations

import logging

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import Footer, Header, Input, RichLog, Static

from ccdesk.engine.errors import ControllerError
from ccdesk.engine.models import ProcessState, ToolApprovalStatus, TurnRole, TurnStatus
from ccdesk.engine.session_controller import SessionController
from ccdesk.shared.models.turn import ToolAction, Turn
from ccdesk.shared.services.project import ProjectInfo
from ccdesk.tui.screens.permission import APPROVE, PermissionScreen

logger = logging.getLogger(__name__)

_ROLE_STYLE = {
    TurnRole.USER: ("You", "bold cyan"),
    TurnRole.ASSISTANT: ("Claude", "bold magenta"),
    TurnRole.SYSTEM: ("System", "bold yellow"),
}

_STATUS_TAG = {
    TurnStatus.STREAMING: ("streaming", "yellow"),
    TurnStatus.ERROR: ("error", "red"),
    TurnStatus.STOPPED: ("stopped", "dim"),
}

_ACTION_STYLE = {
    ToolApprovalStatus.PENDING: "yellow",
    ToolApprovalStatus.APPROVED: "green",
    ToolApprovalStatus.AUTO_APPROVED: "green",
    ToolApprovalStatus.DENIED: "red",
}


def render_turn(turn: Turn) -> Text:
    """Plain-text rendering of one turn for the chat log."""
    label, style = _ROLE_STYLE[turn.role]
    text = Text.assemble((label, style))
    tag = _STATUS_TAG.get(turn.status)
    if tag is not None:
        text.append(f" [{tag[0]}]", style=tag[1])
    if turn.role is TurnRole.ASSISTANT and turn.finished_at is not None:
        text.append(f" {turn.elapsed_seconds:.1f}s", style="dim")
    text.append("\n")
    text.append(turn.content or "...")
    for action in turn.tool_actions:
        text.append(
            f"\n  {action.tool}: {action.status.value.replace('_', ' ')}",
            style=_ACTION_STYLE[action.status],
        )
    return text


class CCDeskApp(App):
    """Terminal UI for one Claude Code session per project."""

    TITLE = "CCDesk"
    SUB_TITLE = "Claude Code session"

    DEFAULT_CSS = """
    #chat-log {
        height: 1fr;
        border: round $primary;
        padding: 0 1;
    }
    #status-line {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    #prompt-input {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("ctrl+c", "stop_turn", "Stop"),
        ("ctrl+r", "retry_turn", "Retry"),
        ("ctrl+l", "clear_history", "Clear"),
        ("escape", "blur", "Blur"),
    ]

    def __init__(
        self,
        controller: SessionController,
        project: ProjectInfo | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.controller = controller
        self.project = project
        self._activity = ""

    def compose(self) -> ComposeResult:
        yield Header()
        yield RichLog(id="chat-log", wrap=True, markup=False)
        yield Static("", id="status-line")
        yield Input(placeholder="Ask Claude...", id="prompt-input")
        yield Footer()

    def on_mount(self) -> None:
        controller = self.controller
        controller.on_process_state_change = self._on_state_change
        controller.on_activity = self._on_activity
        controller.on_turn_update = self._on_turn_update
        controller.on_permission_request = self._on_permission_request
        if self.project is not None:
            self.sub_title = self.project.name
            if self.project.suggestion:
                self.notify(self.project.suggestion, timeout=6)
        self.refresh_log()
        self._update_status()
        self.query_one("#prompt-input", Input).focus()

    # ── Rendering ──

    def refresh_log(self) -> None:
        log = self.query_one("#chat-log", RichLog)
        log.clear()
        for turn in self.controller.turns:
            log.write(render_turn(turn))
            log.write(Text(""))

    def _update_status(self) -> None:
        state = self.controller.state
        mode = self.controller.approval_mode.value
        line = f"{state.value} | {mode}"
        if self._activity:
            line = f"{line} | {self._activity}"
        self.query_one("#status-line", Static).update(Text(line))

    # ── Controller observers ──

    def _on_state_change(self, state: ProcessState) -> None:
        if state is ProcessState.IDLE:
            self._activity = ""
        self._update_status()

    def _on_activity(self, text: str) -> None:
        self._activity = text
        self._update_status()

    def _on_turn_update(self, turn: Turn) -> None:
        self.refresh_log()

    def _on_permission_request(self, turn: Turn, action: ToolAction) -> None:
        def _resolve(result: str | None) -> None:
            self.run_worker(
                self._resolve_permission(action.id, result == APPROVE),
                group="permission",
            )

        self.push_screen(
            PermissionScreen(
                action.tool,
                description=action.description,
                details=action.input or "",
                action_id=action.id,
            ),
            callback=_resolve,
        )

    # ── Commands ──

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        prompt = event.value.strip()
        if not prompt:
            return
        event.input.value = ""
        self.run_worker(self._submit(prompt), group="submit")

    async def _submit(self, prompt: str) -> None:
        try:
            await self.controller.submit(prompt)
        except (ControllerError, ValueError) as exc:
            self.notify(str(exc), severity="warning")

    async def _resolve_permission(self, action_id: str, approved: bool) -> None:
        try:
            await self.controller.resolve_permission(action_id, approved)
        except ControllerError as exc:
            # The turn may have finished while the dialog was open.
            logger.info("Permission reply dropped: %s", exc)

    async def action_stop_turn(self) -> None:
        if self.controller.state is ProcessState.IDLE:
            self.notify("Nothing to stop")
            return
        await self.controller.stop()

    async def action_retry_turn(self) -> None:
        failed = self.controller.last_failed_turn()
        if failed is None:
            self.notify("No failed turn to retry")
            return
        try:
            await self.controller.retry(failed.id)
        except ControllerError as exc:
            self.notify(str(exc), severity="warning")

    def action_clear_history(self) -> None:
        try:
            self.controller.clear_history()
        except ControllerError as exc:
            self.notify(str(exc), severity="warning")
            return
        self.refresh_log()
        self.notify("History cleared")

    def action_blur(self) -> None:
        self.screen.set_focus(None)

    async def action_quit(self) -> None:
        """Stop any running turn before quitting."""
        await self.controller.close()
        await super().action_quit()
