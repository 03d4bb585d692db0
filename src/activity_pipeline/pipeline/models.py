"""Data models for the pipeline lifecycle.

These dataclasses are passed between the ingestor, scheduler, dispatcher
and persistence guard, and returned to callers of ``ActivityPipeline``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from activity_pipeline.compaction.models import CompactionStats
from activity_pipeline.constants import (
    DISPATCH_STATUS_DUPLICATE,
    DISPATCH_STATUS_FAILED,
    DISPATCH_STATUS_SUCCESS,
)
from activity_pipeline.events.models import (
    OptimizedEvent,
    RawEvent,
    RawEventPayload,
    format_timestamp,
    parse_timestamp,
)


class FlushState(str, Enum):
    """Flush cycle state of a pipeline."""

    IDLE = "idle"
    FLUSH_IN_PROGRESS = "flush_in_progress"


def chunk_key(session_id: str, chunk_number: int) -> str:
    """Build the deduplication key of a chunk."""
    return f"{session_id}_{chunk_number}"


@dataclass(frozen=True)
class Chunk:
    """One dispatched unit of optimized events."""

    session_id: str
    chunk_number: int
    optimized_events: tuple[OptimizedEvent, ...] = ()
    raw_event_count: int = 0

    @property
    def key(self) -> str:
        return chunk_key(self.session_id, self.chunk_number)


@dataclass
class PipelineSession:
    """The capture session a pipeline is currently serving."""

    session_id: str
    started_at: datetime
    user_id: str | None = None
    daily_goal: str | None = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "started_at": format_timestamp(self.started_at),
            "daily_goal": self.daily_goal,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineSession":
        return cls(
            session_id=data["session_id"],
            user_id=data.get("user_id"),
            started_at=parse_timestamp(data["started_at"]),
            daily_goal=data.get("daily_goal"),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass
class DispatchContext:
    """Session context sent alongside a chunk."""

    user_id: str | None = None
    daily_goal: str | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    app_usage: dict[str, int] = field(default_factory=dict)
    keystroke_count: int = 0
    click_count: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchOutcome:
    """What happened to one chunk handed to the dispatcher."""

    status: str
    chunk: Chunk
    payload: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == DISPATCH_STATUS_SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == DISPATCH_STATUS_FAILED

    @property
    def duplicate(self) -> bool:
        return self.status == DISPATCH_STATUS_DUPLICATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "session_id": self.chunk.session_id,
            "chunk_number": self.chunk.chunk_number,
            "event_count": len(self.chunk.optimized_events),
            "raw_event_count": self.chunk.raw_event_count,
            "payload": dict(self.payload),
            "error": self.error,
            "completed_at": format_timestamp(self.completed_at) if self.completed_at else None,
        }


@dataclass
class DrainedFlush:
    """Raw events taken from the buffer at the start of a flush cycle."""

    trigger: str
    session: PipelineSession | None
    raw_events: list[RawEvent] = field(default_factory=list)


@dataclass
class PreparedFlush:
    """A compacted and numbered flush, ready for dispatch.

    ``chunk`` is None when there was nothing to send.
    """

    trigger: str
    session_id: str
    raw_event_count: int
    stats: CompactionStats
    chunk: Chunk | None = None
    context: DispatchContext | None = None
    batch: list[OptimizedEvent] | None = None


@dataclass
class FlushResult:
    """Result of one flush cycle."""

    trigger: str
    raw_event_count: int = 0
    optimized_count: int = 0
    chunk_number: int | None = None
    stats: CompactionStats | None = None
    outcome: DispatchOutcome | None = None

    @property
    def dispatched(self) -> bool:
        return self.outcome is not None and self.outcome.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger,
            "raw_event_count": self.raw_event_count,
            "optimized_count": self.optimized_count,
            "chunk_number": self.chunk_number,
            "stats": self.stats.to_dict() if self.stats else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


@dataclass
class PipelineStatus:
    """Point-in-time view of a pipeline, for display."""

    session_id: str | None
    is_active: bool
    flush_state: FlushState
    raw_buffer_size: int
    optimized_buffer_size: int
    last_chunk_number: int
    interval_minutes: float
    result_count: int
    total_raw_events: int
    last_flush_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "is_active": self.is_active,
            "flush_state": self.flush_state.value,
            "raw_buffer_size": self.raw_buffer_size,
            "optimized_buffer_size": self.optimized_buffer_size,
            "last_chunk_number": self.last_chunk_number,
            "interval_minutes": self.interval_minutes,
            "result_count": self.result_count,
            "total_raw_events": self.total_raw_events,
            "last_flush_at": format_timestamp(self.last_flush_at) if self.last_flush_at else None,
        }


@dataclass
class SessionExport:
    """Everything a stopped session leaves behind."""

    session: PipelineSession | None
    raw_events: list[RawEvent] = field(default_factory=list)
    optimized_events: list[OptimizedEvent] = field(default_factory=list)
    results: list[DispatchOutcome] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session.to_dict() if self.session else None,
            "raw_events": [event.to_dict() for event in self.raw_events],
            "optimized_events": [event.to_dict() for event in self.optimized_events],
            "results": [result.to_dict() for result in self.results],
            "metrics": dict(self.metrics),
        }


@dataclass
class PersistedSnapshot:
    """Crash-recovery snapshot of one session."""

    session: PipelineSession
    chunk_number: int
    timestamp: datetime
    raw_buffer: list[RawEvent] = field(default_factory=list)
    optimized_buffer: list[OptimizedEvent] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "chunk_number": self.chunk_number,
            "timestamp": format_timestamp(self.timestamp),
            "raw_buffer": [event.to_dict() for event in self.raw_buffer],
            "optimized_buffer": [event.to_dict() for event in self.optimized_buffer],
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistedSnapshot":
        timestamp = parse_timestamp(data["timestamp"])
        raw_buffer = [
            RawEvent.from_payload(RawEventPayload.model_validate(item), timestamp)
            for item in data.get("raw_buffer", [])
        ]
        return cls(
            session=PipelineSession.from_dict(data["session"]),
            chunk_number=int(data.get("chunk_number", 0)),
            timestamp=timestamp,
            raw_buffer=raw_buffer,
            optimized_buffer=[
                OptimizedEvent.from_dict(item) for item in data.get("optimized_buffer", [])
            ],
            metrics=dict(data.get("metrics", {})),
        )
