"""Base analysis interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from activity_pipeline.events.models import OptimizedEvent, format_timestamp


@dataclass
class AnalysisRequest:
    """Everything the analysis service receives for one chunk."""

    session_id: str
    chunk_number: int
    events: list[OptimizedEvent] = field(default_factory=list)
    """Optimized events in timestamp order."""

    user_id: str | None = None
    daily_goal: str | None = None

    window_start: datetime | None = None
    window_end: datetime | None = None
    """Time span covered by the events."""

    app_usage: dict[str, int] = field(default_factory=dict)
    """Raw event counts per app since the session started."""

    keystroke_count: int = 0
    click_count: int = 0

    metrics: dict[str, Any] = field(default_factory=dict)
    """Serialized session metrics."""

    raw_event_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON body sent to the analysis service."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "chunk_number": self.chunk_number,
            "daily_goal": self.daily_goal,
            "time_window": {
                "start": format_timestamp(self.window_start) if self.window_start else None,
                "end": format_timestamp(self.window_end) if self.window_end else None,
            },
            "events": [event.to_dict() for event in self.events],
            "event_count": len(self.events),
            "raw_event_count": self.raw_event_count,
            "app_usage": dict(self.app_usage),
            "keystroke_count": self.keystroke_count,
            "click_count": self.click_count,
            "metrics": dict(self.metrics),
        }


@dataclass
class AnalysisResult:
    """Result from the analysis service."""

    success: bool = True
    """Whether the analysis succeeded."""

    payload: dict[str, Any] = field(default_factory=dict)
    """Assessment returned by the service, passed through unchanged."""

    error: str | None = None
    """Error message if the analysis failed."""


class BaseAnalyzer(ABC):
    """Base class for analysis service clients."""

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Send one chunk for analysis.

        Implementations may raise; the dispatcher treats an exception the
        same as an unsuccessful result.

        Args:
            request: Chunk and context to analyze.

        Returns:
            AnalysisResult with the service's assessment.
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the analyzer is available and configured."""
        pass

    def close(self) -> None:
        """Release any held resources."""
        return None
