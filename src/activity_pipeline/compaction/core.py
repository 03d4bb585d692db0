"""Compaction engine: raw activity events in, compact optimized events out."""

import logging
from collections import Counter
from collections.abc import Sequence

from activity_pipeline.compaction.coalescing import coalesce_text_inputs
from activity_pipeline.compaction.filters import (
    coalesce_network_bursts,
    filter_duplicate_snapshots,
    remove_useless_events,
)
from activity_pipeline.compaction.models import CompactionStats
from activity_pipeline.config import CompactionConfig
from activity_pipeline.events.models import OptimizedEvent, RawEvent
from activity_pipeline.events.normalize import normalize_events

logger = logging.getLogger(__name__)


class CompactionEngine:
    """Reduce a raw event batch to the events worth analyzing.

    Stages run in a fixed order, each one switchable through
    ``CompactionConfig``:

    1. useless-event removal
    2. text input coalescing
    3. duplicate snapshot filtering
    4. network burst coalescing

    The engine holds no state between calls. Compacting the output of a
    previous pass again yields the same events.
    """

    def __init__(self, config: CompactionConfig | None = None):
        self.config = config or CompactionConfig()

    def compact(self, raw_events: Sequence[RawEvent]) -> list[OptimizedEvent]:
        """Compact a batch of raw events.

        Args:
            raw_events: Raw events in arrival order.

        Returns:
            Optimized events in timestamp order.
        """
        events, _ = self.compact_with_stats(raw_events)
        return events

    def compact_with_stats(
        self, raw_events: Sequence[RawEvent]
    ) -> tuple[list[OptimizedEvent], CompactionStats]:
        """Compact a batch and report how much each stage removed."""
        config = self.config
        stats = CompactionStats(raw_count=len(raw_events))

        events = normalize_events(raw_events)
        stats.normalized_count = len(events)
        stats.skipped_malformed = len(raw_events) - len(events)

        if config.remove_useless_events:
            events = remove_useless_events(events, config)
        stats.after_useless_removal = len(events)

        if config.coalesce_text_inputs:
            events = coalesce_text_inputs(events, config.text_coalesce_gap_ms)
        stats.after_text_coalescing = len(events)

        if config.coalesce_duplicate_snapshots:
            events = filter_duplicate_snapshots(events)
        stats.after_snapshot_filter = len(events)

        if config.coalesce_network_bursts:
            events = coalesce_network_bursts(events, config.network_burst_window_ms)

        events = sorted(events, key=lambda e: e.timestamp)
        stats.after_network_coalescing = len(events)
        stats.type_breakdown = dict(Counter(event.type for event in events))

        if raw_events:
            logger.info(
                f"Compacted {stats.raw_count} raw events into {stats.optimized_count} "
                f"(~{stats.reduction_percent}% token reduction)"
            )
        return events, stats