"""Activity event model and normalization."""

from activity_pipeline.events.models import (
    EventKind,
    OptimizedEvent,
    RawEvent,
    RawEventPayload,
    resolve_kind,
)
from activity_pipeline.events.normalize import normalize_event, normalize_events

__all__ = [
    "EventKind",
    "OptimizedEvent",
    "RawEvent",
    "RawEventPayload",
    "normalize_event",
    "normalize_events",
    "resolve_kind",
]
