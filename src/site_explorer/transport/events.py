"""
Live progress events.

Events are informational: listeners may render them, forward them over a
socket, or ignore them. A failing listener is logged and never affects
the exploration.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from site_explorer.session.models import utc_now_iso
from site_explorer.utils.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    PAGE_STARTED = "page_started"
    DECISION_MADE = "decision_made"
    STEP_COMPLETED = "step_completed"
    URL_DISCOVERED = "url_discovered"
    INPUT_REQUESTED = "input_requested"
    INPUT_RECEIVED = "input_received"
    GRAPH_UPDATING = "graph_updating"
    GRAPH_UPDATED = "graph_updated"
    PAGE_COMPLETED = "page_completed"
    BACKGROUND_FAILED = "background_failed"
    SESSION_COMPLETED = "session_completed"


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "timestamp": self.timestamp, "data": dict(self.data)}


Listener = Callable[[ProgressEvent], None | Awaitable[None]]


class ProgressReporter:
    """
    Fans progress events out to subscribed listeners.

    Listeners may be plain functions or coroutine functions; coroutine
    listeners are scheduled on the running loop.

    Example:
        >>> reporter = ProgressReporter()
        >>> reporter.subscribe(lambda event: print(event.type.value))
        >>> reporter.emit(EventType.PAGE_STARTED, url="https://example.com")
    """

    def __init__(self, keep_history: bool = False) -> None:
        self._listeners: list[Listener] = []
        self._keep_history = keep_history
        self.history: list[ProgressEvent] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event_type: EventType, **data: Any) -> ProgressEvent:
        event = ProgressEvent(type=event_type, data=data)
        if self._keep_history:
            self.history.append(event)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as e:
                logger.warning(f"Progress listener failed on {event_type.value}: {e}")

        return event

    def _listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Progress listener failed: {task.exception()}")

    def events_of(self, event_type: EventType) -> list[ProgressEvent]:
        return [e for e in self.history if e.type is event_type]

    async def flush(self) -> None:
        """Wait for coroutine listeners scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
