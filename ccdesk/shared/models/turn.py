"""Turn and tool action models."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
import uuid

from ccdesk.engine.errors import TurnFinalizedError
from ccdesk.engine.models import ToolApprovalStatus, TurnRole, TurnStatus


def _gen_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ToolAction:
    """A side-effecting action the agent asked to perform during a turn."""
    tool: str
    description: str = ""
    # Raw detail shown in the confirmation dialog: a command or a file path.
    input: str | None = None
    status: ToolApprovalStatus = ToolApprovalStatus.PENDING
    request_id: str | None = None
    id: str = field(default_factory=_gen_id)

    @property
    def is_resolved(self) -> bool:
        return self.status is not ToolApprovalStatus.PENDING


@dataclass
class Turn:
    """One message in a conversation.

    ``content`` only grows while ``status`` is STREAMING; finalize() is the
    single way out of STREAMING and it can only happen once.
    """
    role: TurnRole
    content: str = ""
    status: TurnStatus = TurnStatus.STREAMING
    id: str = field(default_factory=_gen_id)
    created_at: float = field(default_factory=time.time)
    tool_actions: list[ToolAction] = field(default_factory=list)
    finished_at: float | None = None
    # Monotonic clock reading at creation; not persisted.
    started_at: float = field(default_factory=time.monotonic, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def append(self, text: str) -> None:
        """Append one streamed line, newline-joined onto existing content."""
        if self.is_terminal:
            raise TurnFinalizedError(self.id)
        self.content = f"{self.content}\n{text}" if self.content else text

    def add_tool_action(self, action: ToolAction) -> None:
        if self.is_terminal:
            raise TurnFinalizedError(self.id)
        self.tool_actions.append(action)

    def finalize(self, content: str, status: TurnStatus) -> bool:
        """Move to a terminal status. Returns False if already terminal."""
        if not status.is_terminal:
            raise ValueError(f"Cannot finalize turn {self.id} as {status.value}")
        if self.is_terminal:
            return False
        self.content = content
        self.status = status
        self.finished_at = time.time()
        return True

    @property
    def elapsed_seconds(self) -> float:
        """Time since creation, frozen once the turn is terminal."""
        if self.finished_at is not None:
            return max(0.0, self.finished_at - self.created_at)
        return max(0.0, time.monotonic() - self.started_at)


def new_user_turn(content: str) -> Turn:
    return Turn(role=TurnRole.USER, content=content, status=TurnStatus.COMPLETE)


def new_assistant_turn() -> Turn:
    return Turn(role=TurnRole.ASSISTANT, content="", status=TurnStatus.STREAMING)
