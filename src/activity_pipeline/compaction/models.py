"""Working state and report types for compaction."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from activity_pipeline.constants import (
    TOKEN_OVERHEAD,
    TOKENS_PER_OPTIMIZED_EVENT,
    TOKENS_PER_RAW_EVENT,
)
from activity_pipeline.events.models import OptimizedEvent


@dataclass
class CompactionState:
    """Per-pass working state of the useless-event filter.

    A fresh instance is created for every ``compact`` call, so no decision
    leaks from one pass into the next.

    Attributes:
        last_kept_by_type: Timestamp of the last kept event per type tag.
        scroll_window: Timestamps of kept scroll events inside the rolling window.
        last_snapshot_at: Timestamp of the last kept content snapshot.
        kept: Events kept so far, in arrival order.
    """

    last_kept_by_type: dict[str, datetime] = field(default_factory=dict)
    scroll_window: list[datetime] = field(default_factory=list)
    last_snapshot_at: datetime | None = None
    kept: list[OptimizedEvent] = field(default_factory=list)

    def keep(self, event: OptimizedEvent) -> None:
        self.kept.append(event)


@dataclass
class CompactionStats:
    """Counters describing one compaction pass."""

    raw_count: int = 0
    normalized_count: int = 0
    skipped_malformed: int = 0
    after_useless_removal: int = 0
    after_text_coalescing: int = 0
    after_snapshot_filter: int = 0
    after_network_coalescing: int = 0
    type_breakdown: dict[str, int] = field(default_factory=dict)

    @property
    def optimized_count(self) -> int:
        return self.after_network_coalescing

    @property
    def original_tokens(self) -> int:
        return self.raw_count * TOKENS_PER_RAW_EVENT + TOKEN_OVERHEAD

    @property
    def optimized_tokens(self) -> int:
        return self.optimized_count * TOKENS_PER_OPTIMIZED_EVENT + TOKEN_OVERHEAD

    @property
    def reduction_percent(self) -> int:
        """Estimated token reduction, rounded to a whole percent."""
        original = self.original_tokens
        return round((original - self.optimized_tokens) / original * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_count": self.raw_count,
            "normalized_count": self.normalized_count,
            "skipped_malformed": self.skipped_malformed,
            "after_useless_removal": self.after_useless_removal,
            "after_text_coalescing": self.after_text_coalescing,
            "after_snapshot_filter": self.after_snapshot_filter,
            "after_network_coalescing": self.after_network_coalescing,
            "optimized_count": self.optimized_count,
            "original_tokens": self.original_tokens,
            "optimized_tokens": self.optimized_tokens,
            "reduction_percent": self.reduction_percent,
            "type_breakdown": dict(self.type_breakdown),
        }
