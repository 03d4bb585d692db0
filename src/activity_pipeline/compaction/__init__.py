"""Multi-stage compaction of raw activity events."""

from activity_pipeline.compaction.core import CompactionEngine
from activity_pipeline.compaction.models import CompactionState, CompactionStats

__all__ = ["CompactionEngine", "CompactionState", "CompactionStats"]
