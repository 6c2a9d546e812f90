"""CCDesk CLI — main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from ccdesk.adapters.event_channel import EventChannel
from ccdesk.engine.config import ControllerConfig
from ccdesk.engine.errors import ControllerError
from ccdesk.engine.models import ApprovalMode, TurnRole, TurnStatus
from ccdesk.engine.permission_gate import parse_approval_mode
from ccdesk.engine.providers.claude_process import ClaudeProcess
from ccdesk.engine.providers.discovery import check_claude_installed
from ccdesk.engine.session_controller import SessionController
from ccdesk.engine.yaml_config import discover_config, load_yaml_config
from ccdesk.shared.models.turn import ToolAction, Turn
from ccdesk.shared.services.message_store import ConversationLogStorage, MessageStore
from ccdesk.shared.services.project import analyze_project

logger = logging.getLogger(__name__)

LOG_FILENAME = "ccdesk.log"


def configure_logging(config: ControllerConfig, *, to_stderr: bool = False) -> Path:
    """Root logger: rotating file under the data dir, optionally stderr too."""
    log_dir = config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.WARNING)
        root.addHandler(stream_handler)
    return log_file


def load_config(args: argparse.Namespace) -> ControllerConfig:
    """Env config, then YAML (explicit or discovered), then CLI flags."""
    config = ControllerConfig.from_env()
    project_dir = Path(args.project).expanduser() if args.project else None
    search_dir = project_dir or config.project_dir or Path.cwd()

    config_path = Path(args.config) if args.config else discover_config(search_dir)
    if config_path is not None:
        config = load_yaml_config(config_path, base=config)

    if project_dir is not None:
        config.project_dir = project_dir
    elif config.project_dir is None:
        config.project_dir = Path.cwd()
    if args.approval_mode:
        config.approval_mode = parse_approval_mode(args.approval_mode)
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def build_controller(config: ControllerConfig) -> SessionController:
    """Wire channel, process, store and controller for the configured project."""
    channel = EventChannel()
    process = ClaudeProcess(
        channel,
        command=config.claude_command,
        kill_grace_seconds=config.kill_grace_seconds,
    )
    store = MessageStore(
        ConversationLogStorage(config.data_dir),
        history_limit=config.history_limit,
    )
    controller = SessionController(store, process, config=config)
    controller.select_project(config.project_dir)
    return controller


def format_turn(turn: Turn) -> str:
    label = "You" if turn.role is TurnRole.USER else "Claude"
    if turn.status is not TurnStatus.COMPLETE:
        label = f"{label} [{turn.status.value}]"
    return f"{label}: {turn.content}"


class _HeadlessPrinter:
    """Streams the assistant turn to a text stream as it grows."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._streamed = ""

    def on_turn_update(self, turn: Turn) -> None:
        if turn.role is not TurnRole.ASSISTANT:
            return
        if turn.status is TurnStatus.STREAMING:
            new = turn.content[len(self._streamed):]
            if new:
                self._out.write(new)
                self._out.flush()
                self._streamed = turn.content
            return
        if turn.content.startswith(self._streamed):
            self._out.write(turn.content[len(self._streamed):])
        else:
            # Final text replaced what was streamed (e.g. an error message).
            self._out.write(f"\n{turn.content}")
        self._out.write("\n")
        self._out.flush()


async def run_prompt(
    controller: SessionController,
    prompt: str,
    out: TextIO | None = None,
) -> int:
    """Headless one-shot: submit, stream to ``out``, return an exit code.

    Tool actions that need confirmation are denied; there is nobody to ask.
    """
    printer = _HeadlessPrinter(out or sys.stdout)
    controller.on_turn_update = printer.on_turn_update

    pending: set[asyncio.Task] = set()

    def _deny(turn: Turn, action: ToolAction) -> None:
        logger.warning("Denying %s in headless mode", action.tool)
        task = asyncio.get_running_loop().create_task(
            controller.resolve_permission(action.id, False)
        )
        pending.add(task)
        task.add_done_callback(pending.discard)

    controller.on_permission_request = _deny

    loop = asyncio.get_running_loop()
    interrupt_installed = False
    if sys.platform != "win32":
        loop.add_signal_handler(
            signal.SIGINT, lambda: loop.create_task(controller.stop()),
        )
        interrupt_installed = True
    try:
        turn = await controller.submit(prompt)
        await controller.wait_idle()
    finally:
        if interrupt_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await controller.close()
    return 0 if turn.status is TurnStatus.COMPLETE else 1


def _cmd_check(config: ControllerConfig) -> int:
    status = check_claude_installed(config.claude_command)
    if not status.installed:
        where = f" at {status.path}" if status.path else ""
        print(f"Claude Code CLI not usable{where} (command: {config.claude_command})")
        return 1
    print(f"Claude Code CLI {status.version or 'unknown version'} at {status.path}")
    return 0


def _cmd_history(controller: SessionController) -> int:
    turns = controller.turns
    if not turns:
        print("No saved history.")
        return 0
    for turn in turns:
        print(format_turn(turn))
        print()
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ccdesk",
        description="CCDesk — Terminal UI for Claude Code sessions",
    )
    parser.add_argument(
        "--project", metavar="PATH",
        help="Project directory Claude Code runs in (default: current directory)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: <project>/.ccdesk/ccdesk.yaml if present)",
    )
    parser.add_argument(
        "--approval-mode",
        choices=[m.value for m in ApprovalMode],
        help="How tool actions are approved",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--history", action="store_true",
        help="Print the saved conversation for the project and exit",
    )
    parser.add_argument(
        "--clear-history", action="store_true",
        help="Erase the saved conversation for the project and exit",
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Report whether the Claude Code CLI is installed and exit",
    )
    parser.add_argument(
        "--prompt", metavar="TEXT",
        help="Run one prompt without the TUI and print the reply",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except (OSError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    headless = args.history or args.clear_history or args.check or args.prompt is not None
    log_file = configure_logging(config, to_stderr=headless)
    logger.info(
        "Starting CCDesk project=%s approval=%s log=%s",
        config.project_dir, config.approval_mode.value, log_file,
    )

    if args.check:
        sys.exit(_cmd_check(config))

    try:
        project = analyze_project(config.project_dir)
    except NotADirectoryError:
        print(f"Project directory does not exist: {config.project_dir}", file=sys.stderr)
        sys.exit(2)

    controller = build_controller(config)

    if args.history:
        sys.exit(_cmd_history(controller))

    if args.clear_history:
        controller.clear_history()
        print(f"Cleared history for {project.path}")
        sys.exit(0)

    if args.prompt is not None:
        try:
            code = asyncio.run(run_prompt(controller, args.prompt))
        except (ControllerError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            code = 1
        sys.exit(code)

    # TUI mode
    from ccdesk.tui.app import CCDeskApp

    app = CCDeskApp(controller, project=project)
    app.run()


if __name__ == "__main__":
    main()
