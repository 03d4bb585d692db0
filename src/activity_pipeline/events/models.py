"""Data models for activity events.

Raw events arrive from the capture source in a loose wire format and are
validated into ``RawEvent`` instances. Compaction turns them into
``OptimizedEvent`` instances that carry only the whitelisted fields for
their kind.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from activity_pipeline.constants import EVENT_TYPE_ALIASES


class EventKind(str, Enum):
    """Families of activity events.

    Capture sources emit many type tags for the same family (``keydown``,
    ``clipboard_paste`` and ``text_input`` are all text input). Compaction
    rules are written against the family, never the raw tag.
    """

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    APP_FOCUS = "app_focus"
    APPLICATION_CHANGE = "application_change"
    WINDOW_CHANGE = "window_change"
    PAGE_VIEW = "page_view"
    TEXT_INPUT = "text_input"
    TEXT_SELECTION = "text_selection"
    SCROLL = "scroll_event"
    CONTENT_SNAPSHOT = "content_snapshot"
    CLICK = "click"
    ENHANCED_CLICK = "enhanced_element_click"
    NETWORK = "network"
    UNKNOWN = "unknown"


_KIND_BY_VALUE: dict[str, EventKind] = {kind.value: kind for kind in EventKind}

STRUCTURAL_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.SESSION_START,
        EventKind.SESSION_END,
        EventKind.APP_FOCUS,
        EventKind.WINDOW_CHANGE,
        EventKind.PAGE_VIEW,
    }
)

# Events that tell us which app or window is in the foreground
FOCUS_KINDS: frozenset[EventKind] = frozenset(
    {EventKind.APP_FOCUS, EventKind.APPLICATION_CHANGE, EventKind.WINDOW_CHANGE}
)


def resolve_kind(type_tag: str) -> EventKind:
    """Map a capture-source type tag to its event family.

    Unrecognized tags resolve to ``EventKind.UNKNOWN``; the caller keeps the
    original tag string.
    """
    kind = _KIND_BY_VALUE.get(type_tag)
    if kind is not None and kind is not EventKind.UNKNOWN:
        return kind
    alias = EVENT_TYPE_ALIASES.get(type_tag)
    if alias is not None:
        return _KIND_BY_VALUE[alias]
    return EventKind.UNKNOWN


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so all comparisons are well defined."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 with millisecond precision in UTC."""
    iso = ensure_aware(value).astimezone(UTC).isoformat(timespec="milliseconds")
    return iso.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted)."""
    return ensure_aware(datetime.fromisoformat(value))


def millis_between(earlier: datetime, later: datetime) -> float:
    """Milliseconds from ``earlier`` to ``later`` (negative when out of order)."""
    return (later - earlier).total_seconds() * 1000


class RawEventPayload(BaseModel):
    """Wire-format raw event as sent by the capture source.

    Unknown top-level keys are allowed and kept, so field extraction can
    look at them.
    """

    model_config = ConfigDict(extra="allow")

    timestamp: datetime | None = None
    type: str = Field(..., min_length=1)
    app: str | None = None
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class RawEvent:
    """An unprocessed activity record, immutable once buffered."""

    timestamp: datetime
    type: str
    app: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        return resolve_kind(self.type)

    @classmethod
    def from_payload(cls, payload: RawEventPayload, now: datetime) -> "RawEvent":
        """Build a raw event from a validated payload.

        Args:
            payload: Validated wire payload.
            now: Timestamp used when the payload carries none.
        """
        timestamp = payload.timestamp if payload.timestamp is not None else now
        return cls(
            timestamp=ensure_aware(timestamp),
            type=payload.type,
            app=payload.app,
            data=dict(payload.data or {}),
            extra=dict(payload.model_extra or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the wire format."""
        result: dict[str, Any] = dict(self.extra)
        result["timestamp"] = format_timestamp(self.timestamp)
        result["type"] = self.type
        if self.app is not None:
            result["app"] = self.app
        if self.data:
            result["data"] = dict(self.data)
        return result


@dataclass(frozen=True)
class OptimizedEvent:
    """A compacted event carrying only the whitelisted fields for its kind."""

    timestamp: datetime
    type: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        return resolve_kind(self.type)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def text(self) -> str:
        """Return the stripped text field, or an empty string."""
        value = self.fields.get("text")
        return str(value).strip() if value is not None else ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format sent to the analysis service."""
        return {
            "timestamp": format_timestamp(self.timestamp),
            "type": self.type,
            **self.fields,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OptimizedEvent":
        """Rebuild from the wire format (used by crash recovery)."""
        fields = {k: v for k, v in data.items() if k not in ("timestamp", "type")}
        return cls(
            timestamp=parse_timestamp(str(data["timestamp"])),
            type=str(data["type"]),
            fields=fields,
        )

    def to_raw(self) -> RawEvent:
        """Express this event as a raw event that normalizes back to itself."""
        if self.kind is EventKind.UNKNOWN:
            payload = self.fields.get("payload") or {}
            return RawEvent(
                timestamp=self.timestamp,
                type=self.type,
                app=self.fields.get("app_name"),
                data=dict(payload),
            )
        return RawEvent(
            timestamp=self.timestamp,
            type=self.type,
            app=self.fields.get("app_name"),
            data=dict(self.fields),
        )
