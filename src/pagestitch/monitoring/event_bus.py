"""Event bus — decouples the capture engine from its consumers (CLI, logs, UIs).

The engine never dispatches ambient events; the caller hands a bus to the
session and registers whichever sinks it needs:

* ``LoggingSink`` — DEBUG lines on the ``pagestitch.events`` logger.
* ``JsonlSink`` — one JSON line per event on a stream.
* ``InMemorySink`` — collects events, useful for tests.
* ``CallbackSink`` — wraps a plain (sync or async) callable.

Progress events are advisory: a failing sink is logged and skipped, it
never interrupts a capture.
"""

from __future__ import annotations

import inspect
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """All event types emitted during a capture session."""

    # Lifecycle
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"
    SESSION_CANCELLED = "session_cancelled"

    # Engine
    STATE_CHANGED = "state_changed"
    STRATEGY_SELECTED = "strategy_selected"
    SUB_CAPTURE_FAILED = "sub_capture_failed"

    # Progress / info
    LOG = "log"
    PROGRESS = "progress"


# ---------------------------------------------------------------------------
# Event payload model
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """Structured event emitted by the event bus."""

    event_type: EventType
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    session_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_jsonl(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Sink protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class EventSink(Protocol):
    """Protocol for event consumers."""

    async def handle_event(self, event: Event) -> None:
        """Process a single event."""
        ...


# ---------------------------------------------------------------------------
# Built-in sinks
# ---------------------------------------------------------------------------


class LoggingSink:
    """Emit events to the Python logger at DEBUG level."""

    def __init__(self, logger_name: str = "pagestitch.events") -> None:
        self._logger = logging.getLogger(logger_name)

    async def handle_event(self, event: Event) -> None:
        """Log the event."""
        self._logger.debug(
            "[%s] %s: %s",
            event.session_id or "?",
            event.event_type.value,
            json.dumps(event.data, default=str)[:200],
        )


class InMemorySink:
    """Collect events in a list — useful for testing."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def handle_event(self, event: Event) -> None:
        """Append the event to the in-memory list."""
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        """Return the collected events of one type, in order."""
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        """Clear all collected events."""
        self.events.clear()

    @property
    def count(self) -> int:
        """Return the number of collected events."""
        return len(self.events)


class JsonlSink:
    """Write events as JSONL lines to a file-like object.

    Works with ``sys.stdout``, ``sys.stderr``, or an open file handle.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream

    async def handle_event(self, event: Event) -> None:
        """Write one JSON line to the stream."""
        self._stream.write(event.to_jsonl() + "\n")
        if hasattr(self._stream, "flush"):
            self._stream.flush()


class CallbackSink:
    """Forward events to a plain callable; coroutine functions are awaited."""

    def __init__(self, callback: Callable[[Event], Any]) -> None:
        self._callback = callback

    async def handle_event(self, event: Event) -> None:
        """Invoke the callback with the event."""
        result = self._callback(event)
        if inspect.isawaitable(result):
            await result


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """Central event dispatcher for engine-to-consumer communication.

    Args:
        session_id: Default session ID attached to events that do not carry one.
    """

    def __init__(self, session_id: str = "") -> None:
        self._session_id = session_id
        self._sinks: list[EventSink] = []
        self._latest_progress: float = 0.0

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def add_sink(self, sink: EventSink) -> None:
        """Register an event sink."""
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        """Remove a previously registered sink."""
        self._sinks = [s for s in self._sinks if s is not sink]

    @property
    def sink_count(self) -> int:
        """Return the number of registered sinks."""
        return len(self._sinks)

    @property
    def latest_progress(self) -> float:
        """Fraction reported by the most recent ``progress`` event."""
        return self._latest_progress

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    async def emit(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        *,
        session_id: str = "",
    ) -> None:
        """Emit an event to all registered sinks.

        Args:
            event_type: The event type (``EventType`` enum or raw string).
            data: Optional payload data.
            session_id: Overrides the bus default session ID.
        """
        # Normalise string → enum
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError:
                event_type = EventType.LOG

        payload = data or {}
        if event_type == EventType.PROGRESS:
            self._latest_progress = float(payload.get("progress", 0.0))
        elif event_type == EventType.SESSION_STARTED:
            self._latest_progress = 0.0

        event = Event(
            event_type=event_type,
            session_id=session_id or self._session_id,
            data=payload,
        )

        for sink in self._sinks:
            try:
                await sink.handle_event(event)
            except Exception as exc:
                logger.warning("EventBus sink error (%s): %s", type(sink).__name__, exc)
