"""Capture progress and lifecycle events."""

from pagestitch.monitoring.event_bus import (
    CallbackSink,
    Event,
    EventBus,
    EventSink,
    EventType,
    InMemorySink,
    JsonlSink,
    LoggingSink,
)

__all__ = [
    "CallbackSink",
    "Event",
    "EventBus",
    "EventSink",
    "EventType",
    "InMemorySink",
    "JsonlSink",
    "LoggingSink",
]
