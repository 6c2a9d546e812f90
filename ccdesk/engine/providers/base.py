"""Abstract base for agent processes.

An agent process wraps one external CLI runtime. The controller calls
start() once per prompt and receives everything else as events the
process publishes into its EventChannel:

    chunk(text) ... chunk(text) [stderr(text)] [tool_request(...)] completed(success, full_output)
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
import logging
import uuid

from ccdesk.adapters.event_channel import EventChannel
from ccdesk.adapters.events import AgentEvent

logger = logging.getLogger(__name__)


@dataclass
class StartOptions:
    """Per-invocation options handed to start()."""
    auto_approve: bool = False
    cwd: str | None = None
    # Pre-allocated by the caller so it can subscribe before any output.
    session_id: str | None = None


class AgentProcess(abc.ABC):
    """Opaque stream source for one agent runtime."""

    def __init__(self, channel: EventChannel) -> None:
        self._channel = channel

    @property
    def channel(self) -> EventChannel:
        return self._channel

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short runtime name (e.g. 'claude')."""

    @abc.abstractmethod
    async def start(self, prompt: str, options: StartOptions) -> str:
        """Launch one invocation and return its session id.

        Raises StartFailure if the runtime could not be launched; in that
        case no event will ever be published for the session.
        """

    @abc.abstractmethod
    async def cancel(self, session_id: str) -> None:
        """Best-effort termination. An unknown or finished session is not an error."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check if the runtime's CLI is installed."""

    async def respond_permission(
        self, session_id: str, request_id: str, approved: bool,
    ) -> None:
        """Answer a tool_request. Runtimes without interactive approval ignore it."""
        logger.debug(
            "%s ignores permission reply %s=%s (session=%s)",
            self.name, request_id, approved, session_id,
        )

    async def shutdown(self) -> None:
        """Clean up resources (e.g. kill subprocesses). Default no-op."""
        return None

    @staticmethod
    def new_session_id() -> str:
        return str(uuid.uuid4())

    def _publish(self, session_id: str, event: AgentEvent) -> None:
        self._channel.publish(session_id, event)
