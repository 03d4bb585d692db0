"""Per-session activity metrics.

Tracks how the user spends a session independently of compaction: per-app
usage, bursts of active interaction, and how much the raw stream shrank.
All timings are derived from event timestamps, not wall-clock arrival.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from activity_pipeline.constants import (
    ACTIVE_APP_GAP_CAP_SECONDS,
    ACTIVE_EVENT_TAGS,
    ACTIVITY_BURST_GAP_SECONDS,
    CLICK_TAGS,
    KEYSTROKE_TAGS,
)
from activity_pipeline.events.models import (
    EventKind,
    RawEvent,
    format_timestamp,
    parse_timestamp,
)
from activity_pipeline.events.normalize import APP_NAME_PATHS, extract_field

UNKNOWN_APP = "Unknown"


def _minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def app_name_of(event: RawEvent) -> str | None:
    """Best-effort app name of a raw event."""
    if event.app:
        return event.app
    value = extract_field(event, APP_NAME_PATHS)
    return str(value) if value else None


@dataclass
class AppUsage:
    """Usage of one app within a session."""

    first_seen: datetime
    last_seen: datetime
    active_minutes: float = 0.0
    switch_count: int = 0

    @property
    def total_minutes(self) -> float:
        return max(0.0, _minutes(self.first_seen, self.last_seen))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_minutes": round(self.total_minutes, 3),
            "active_minutes": round(self.active_minutes, 3),
            "switch_count": self.switch_count,
            "first_seen": format_timestamp(self.first_seen),
            "last_seen": format_timestamp(self.last_seen),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppUsage":
        return cls(
            first_seen=parse_timestamp(data["first_seen"]),
            last_seen=parse_timestamp(data["last_seen"]),
            active_minutes=float(data.get("active_minutes", 0.0)),
            switch_count=int(data.get("switch_count", 0)),
        )


@dataclass
class ActivityBurst:
    """A run of active events with no gap longer than the burst gap."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> float:
        return max(0.0, _minutes(self.start, self.end))

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "duration_minutes": round(self.duration_minutes, 3),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityBurst":
        return cls(start=parse_timestamp(data["start"]), end=parse_timestamp(data["end"]))


@dataclass
class SessionMetrics:
    """Running metrics of one capture session."""

    per_app: dict[str, AppUsage] = field(default_factory=dict)
    bursts: list[ActivityBurst] = field(default_factory=list)
    current_burst: ActivityBurst | None = None
    app_event_counts: Counter[str] = field(default_factory=Counter)
    keystroke_count: int = 0
    click_count: int = 0
    total_raw_events: int = 0
    compacted_raw_events: int = 0
    optimized_events: int = 0
    first_event_at: datetime | None = None
    last_event_at: datetime | None = None

    def record(self, event: RawEvent) -> None:
        """Account for one buffered raw event."""
        ts = event.timestamp
        self.total_raw_events += 1
        if self.first_event_at is None or ts < self.first_event_at:
            self.first_event_at = ts
        if self.last_event_at is None or ts > self.last_event_at:
            self.last_event_at = ts

        if event.type in KEYSTROKE_TAGS:
            self.keystroke_count += 1
        if event.type in CLICK_TAGS:
            self.click_count += 1

        active = event.type in ACTIVE_EVENT_TAGS
        if active:
            self._record_activity(ts)

        app = app_name_of(event)
        if app and app != UNKNOWN_APP:
            self.app_event_counts[app] += 1
            self._record_app(app, event, ts, active)

    def _record_activity(self, ts: datetime) -> None:
        burst = self.current_burst
        if burst is None:
            self.current_burst = ActivityBurst(start=ts, end=ts)
            return
        gap = (ts - burst.end).total_seconds()
        if gap > ACTIVITY_BURST_GAP_SECONDS:
            self.bursts.append(burst)
            self.current_burst = ActivityBurst(start=ts, end=ts)
        elif gap > 0:
            burst.end = ts

    def _record_app(self, app: str, event: RawEvent, ts: datetime, active: bool) -> None:
        usage = self.per_app.get(app)
        if usage is None:
            usage = AppUsage(first_seen=ts, last_seen=ts)
            self.per_app[app] = usage
        elif active:
            # Out-of-order arrivals yield a negative gap and are not attributed
            gap = (ts - usage.last_seen).total_seconds()
            if 0 <= gap < ACTIVE_APP_GAP_CAP_SECONDS:
                usage.active_minutes += gap / 60

        if event.kind is EventKind.APPLICATION_CHANGE:
            usage.switch_count += 1
        if ts > usage.last_seen:
            usage.last_seen = ts
        if ts < usage.first_seen:
            usage.first_seen = ts

    def record_compaction(self, raw_count: int, optimized_count: int) -> None:
        """Account for one compaction pass."""
        self.compacted_raw_events += raw_count
        self.optimized_events += optimized_count

    @property
    def compression_ratio(self) -> float:
        if not self.compacted_raw_events:
            return 1.0
        return self.optimized_events / self.compacted_raw_events

    @property
    def total_active_minutes(self) -> float:
        closed = sum(burst.duration_minutes for burst in self.bursts)
        current = self.current_burst.duration_minutes if self.current_burst else 0.0
        return closed + current

    @property
    def inactive_minutes(self) -> float:
        if self.first_event_at is None or self.last_event_at is None:
            return 0.0
        span = _minutes(self.first_event_at, self.last_event_at)
        return max(0.0, span - self.total_active_minutes)

    def to_dict(self) -> dict[str, Any]:
        bursts = list(self.bursts)
        return {
            "per_app_usage": {app: usage.to_dict() for app, usage in self.per_app.items()},
            "active_time": {
                "total_active_minutes": round(self.total_active_minutes, 3),
                "inactive_minutes": round(self.inactive_minutes, 3),
                "activity_bursts": [burst.to_dict() for burst in bursts],
                "current_burst": self.current_burst.to_dict() if self.current_burst else None,
            },
            "raw_data_snapshot": {
                "total_raw_events": self.total_raw_events,
                "compacted_raw_events": self.compacted_raw_events,
                "optimized_events": self.optimized_events,
                "compression_ratio": round(self.compression_ratio, 4),
            },
            "app_event_counts": dict(self.app_event_counts),
            "keystroke_count": self.keystroke_count,
            "click_count": self.click_count,
            "first_event_at": format_timestamp(self.first_event_at)
            if self.first_event_at
            else None,
            "last_event_at": format_timestamp(self.last_event_at) if self.last_event_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetrics":
        active_time = data.get("active_time", {})
        snapshot = data.get("raw_data_snapshot", {})
        current = active_time.get("current_burst")
        first = data.get("first_event_at")
        last = data.get("last_event_at")
        return cls(
            per_app={
                app: AppUsage.from_dict(usage)
                for app, usage in data.get("per_app_usage", {}).items()
            },
            bursts=[ActivityBurst.from_dict(b) for b in active_time.get("activity_bursts", [])],
            current_burst=ActivityBurst.from_dict(current) if current else None,
            app_event_counts=Counter(data.get("app_event_counts", {})),
            keystroke_count=int(data.get("keystroke_count", 0)),
            click_count=int(data.get("click_count", 0)),
            total_raw_events=int(snapshot.get("total_raw_events", 0)),
            compacted_raw_events=int(snapshot.get("compacted_raw_events", 0)),
            optimized_events=int(snapshot.get("optimized_events", 0)),
            first_event_at=parse_timestamp(first) if first else None,
            last_event_at=parse_timestamp(last) if last else None,
        )
