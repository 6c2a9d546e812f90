"""Bounded, project-scoped conversation history of terminal turns.

Storage layout:
    {data_dir}/projects/{project_id}/history.json

Only terminal turns are ever written. A streaming turn lives in memory
until finalize_turn() moves it to a terminal status, which is also the
single point where the log is persisted. Anything found in storage with
status "streaming" is treated as a leftover from a crash and dropped.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from ccdesk.engine.errors import NoProjectError, TurnNotFoundError
from ccdesk.engine.models import ToolApprovalStatus, TurnRole, TurnStatus
from ccdesk.shared.models.turn import ToolAction, Turn
from ccdesk.shared.services.durable_write import atomic_write_json, remove_file

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
HISTORY_FILENAME = "history.json"
FORMAT_VERSION = "1.0"

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


class ConversationLogStorage:
    """Reads and writes one JSON history file per project."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, project_id: str) -> Path:
        safe = _UNSAFE_CHARS_RE.sub("_", project_id).strip("._") or "default"
        return self._base_dir / "projects" / safe / HISTORY_FILENAME

    def read(self, project_id: str) -> list[dict]:
        """Raw turn dicts for a project. Missing or unreadable files read as empty."""
        path = self.path_for(project_id)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Unreadable history file %s; starting empty", path)
            return []
        turns = data.get("turns") if isinstance(data, dict) else None
        if not isinstance(turns, list):
            logger.warning("History file %s has no turn list; starting empty", path)
            return []
        return [t for t in turns if isinstance(t, dict)]

    def write(self, project_id: str, turns: list[Turn]) -> Path:
        path = self.path_for(project_id)
        data = {
            "version": FORMAT_VERSION,
            "project_id": project_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "turns": [_turn_to_dict(t) for t in turns if t.is_terminal],
        }
        atomic_write_json(path, data)
        logger.debug("History saved to %s (%d turns)", path, len(data["turns"]))
        return path

    def delete(self, project_id: str) -> bool:
        return remove_file(self.path_for(project_id))


class MessageStore:
    """Owns the conversation log of the currently selected project.

    The only writer of persisted turns. Callers never mutate turn status
    themselves; they go through append_turn() and finalize_turn().
    """

    def __init__(
        self,
        storage: ConversationLogStorage,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._storage = storage
        self._limit = history_limit
        self._project_id: str | None = None
        self._turns: list[Turn] = []

    @property
    def project_id(self) -> str | None:
        return self._project_id

    @property
    def history_limit(self) -> int:
        return self._limit

    @property
    def turns(self) -> list[Turn]:
        """Snapshot of the in-memory view in creation order."""
        return list(self._turns)

    def select_project(self, project_id: str) -> list[Turn]:
        """Swap the in-memory log for the target project's persisted log."""
        self._project_id = project_id
        self._turns = self.load(project_id)
        logger.info(
            "Selected project %s (%d turns restored)", project_id, len(self._turns),
        )
        return self.turns

    def load(self, project_id: str) -> list[Turn]:
        """Persisted log for a project, terminal turns only, bounded."""
        turns: list[Turn] = []
        for raw in self._storage.read(project_id):
            try:
                turn = _dict_to_turn(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed turn in %s history", project_id)
                continue
            if not turn.is_terminal:
                logger.warning(
                    "Discarding non-terminal turn %s from %s history",
                    turn.id, project_id,
                )
                continue
            turns.append(turn)
        return turns[-self._limit:]

    def clear(self, project_id: str | None = None) -> None:
        """Erase the persisted log for a project (default: the current one)."""
        target = project_id or self._require_project()
        self._storage.delete(target)
        if target == self._project_id:
            self._turns = [t for t in self._turns if not t.is_terminal]
        logger.info("Cleared history for project %s", target)

    def get_turn(self, turn_id: str) -> Turn:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        raise TurnNotFoundError(turn_id)

    def previous_user_turn(self, turn_id: str) -> Turn | None:
        """The closest user turn created before the given turn."""
        index = self._index_of(turn_id)
        for turn in reversed(self._turns[:index]):
            if turn.role is TurnRole.USER:
                return turn
        return None

    def append_turn(self, turn: Turn) -> Turn:
        """Add a turn at the end of the log.

        Terminal turns are persisted right away; streaming turns stay in
        memory until finalize_turn().
        """
        self._require_project()
        self._turns.append(turn)
        if turn.is_terminal:
            self._trim()
            self._persist()
        return turn

    def finalize_turn(self, turn_id: str, final_content: str, final_status: TurnStatus) -> bool:
        """Move a turn to a terminal status and persist.

        Returns False without touching anything if the turn was already
        terminal.
        """
        turn = self.get_turn(turn_id)
        if not turn.finalize(final_content, final_status):
            logger.debug("Turn %s already %s; finalize ignored", turn_id, turn.status.value)
            return False
        logger.info("Turn %s finalized as %s", turn_id, final_status.value)
        self._trim()
        self._persist()
        return True

    def _trim(self) -> None:
        terminal = sum(1 for t in self._turns if t.is_terminal)
        while terminal > self._limit:
            for i, turn in enumerate(self._turns):
                if turn.is_terminal:
                    del self._turns[i]
                    terminal -= 1
                    break

    def _persist(self) -> None:
        project_id = self._require_project()
        self._storage.write(project_id, self._turns)

    def _index_of(self, turn_id: str) -> int:
        for i, turn in enumerate(self._turns):
            if turn.id == turn_id:
                return i
        raise TurnNotFoundError(turn_id)

    def _require_project(self) -> str:
        if self._project_id is None:
            raise NoProjectError()
        return self._project_id


def _tool_action_to_dict(action: ToolAction) -> dict:
    return {
        "id": action.id,
        "tool": action.tool,
        "description": action.description,
        "input": action.input,
        "status": action.status.value,
        "request_id": action.request_id,
    }


def _dict_to_tool_action(data: dict) -> ToolAction:
    return ToolAction(
        id=data["id"],
        tool=data["tool"],
        description=data.get("description", ""),
        input=data.get("input"),
        status=ToolApprovalStatus(data.get("status", "pending")),
        request_id=data.get("request_id"),
    )


def _turn_to_dict(turn: Turn) -> dict:
    return {
        "id": turn.id,
        "role": turn.role.value,
        "content": turn.content,
        "status": turn.status.value,
        "created_at": turn.created_at,
        "finished_at": turn.finished_at,
        "tool_actions": [_tool_action_to_dict(a) for a in turn.tool_actions],
    }


def _dict_to_turn(data: dict) -> Turn:
    return Turn(
        id=str(data["id"]),
        role=TurnRole(data["role"]),
        content=str(data.get("content", "")),
        status=TurnStatus(data["status"]),
        created_at=float(data["created_at"]),
        finished_at=data.get("finished_at"),
        tool_actions=[
            _dict_to_tool_action(a) for a in data.get("tool_actions", [])
        ],
    )
