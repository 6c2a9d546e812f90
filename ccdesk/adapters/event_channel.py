"""Ordered delivery of agent process events to a single subscriber.

The process adapter publishes events as they are read from the child's
pipes. The channel queues them for the one live subscription and a pump
task hands them to the subscriber's handlers in emission order.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from ccdesk.adapters.events import AgentEvent, EVENT_TYPES, dict_to_event

logger = logging.getLogger(__name__)

Handler = Callable[[AgentEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handlers bound to one session id, fed by a private queue."""

    def __init__(self, session_id: str, handlers: Mapping[str, Handler]) -> None:
        unknown = set(handlers) - EVENT_TYPES
        if unknown:
            raise ValueError(f"Unknown event handler(s): {', '.join(sorted(unknown))}")
        self.session_id = session_id
        self._handlers = dict(handlers)
        self._queue: asyncio.Queue[AgentEvent] = asyncio.Queue()
        self._disposed = False
        self._finished = False
        self._task: asyncio.Task | None = asyncio.get_running_loop().create_task(
            self._pump(), name=f"event-pump-{session_id}"
        )

    @property
    def active(self) -> bool:
        """True until disposed or until ``completed`` has been accepted."""
        return not self._disposed and not self._finished

    @property
    def disposed(self) -> bool:
        return self._disposed

    def offer(self, event: AgentEvent) -> bool:
        """Queue an event for delivery. Returns False if it was dropped."""
        if not self.active:
            return False
        if event.event_type == "completed":
            # Nothing may follow completed.
            self._finished = True
        self._queue.put_nowait(event)
        return True

    async def _pump(self) -> None:
        while not self._disposed:
            event = await self._queue.get()
            try:
                if not self._disposed:
                    await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: AgentEvent) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            return
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Event handler for %s failed (session=%s)",
                event.event_type, self.session_id,
            )

    async def join(self) -> None:
        """Wait until every queued event has been delivered or dropped."""
        if self._disposed:
            return
        await self._queue.join()

    def dispose(self) -> None:
        """Stop delivery. Idempotent and safe to call from a handler."""
        if self._disposed:
            return
        self._disposed = True
        # Drop anything still queued so join() never waits on it.
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        task = self._task
        self._task = None
        # From inside a handler the pump exits on its own after the handler returns.
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.debug("Subscription disposed (session=%s)", self.session_id)


class EventChannel:
    """Routes published events to the one live subscription."""

    def __init__(self) -> None:
        self._current: Subscription | None = None

    @property
    def current(self) -> Subscription | None:
        return self._current

    def subscribe(self, session_id: str, handlers: Mapping[str, Handler]) -> Subscription:
        """Register handlers for a session, disposing any prior subscription."""
        if self._current is not None:
            self._current.dispose()
        self._current = Subscription(session_id, handlers)
        logger.debug("Subscribed to session %s", session_id)
        return self._current

    def publish(self, session_id: str, event: AgentEvent | dict[str, Any]) -> bool:
        """Hand an event to the live subscription. Never blocks."""
        if isinstance(event, dict):
            event = dict_to_event(event)
        event.session_id = session_id
        sub = self._current
        if sub is None or sub.session_id != session_id:
            logger.debug(
                "Dropping %s for session %s (no live subscription)",
                event.event_type, session_id,
            )
            return False
        accepted = sub.offer(event)
        if not accepted:
            logger.debug(
                "Dropping %s for session %s (subscription closed)",
                event.event_type, session_id,
            )
        return accepted

    async def flush(self) -> None:
        """Wait for the live subscription to drain its queue."""
        sub = self._current
        if sub is not None:
            await sub.join()

    def close(self) -> None:
        if self._current is not None:
            self._current.dispose()
            self._current = None
