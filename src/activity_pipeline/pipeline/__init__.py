"""Session lifecycle: ingestion, flush scheduling, dispatch and recovery."""

from activity_pipeline.pipeline.core import ActivityPipeline
from activity_pipeline.pipeline.dispatcher import AnalysisDispatcher
from activity_pipeline.pipeline.ingestor import EventIngestor
from activity_pipeline.pipeline.metrics import SessionMetrics
from activity_pipeline.pipeline.models import (
    Chunk,
    DispatchOutcome,
    FlushResult,
    FlushState,
    PersistedSnapshot,
    PipelineSession,
    PipelineStatus,
    SessionExport,
)
from activity_pipeline.pipeline.persistence import PersistenceGuard
from activity_pipeline.pipeline.scheduler import (
    IntervalScheduler,
    ScheduledHandle,
    Scheduler,
    ThreadingScheduler,
)
from activity_pipeline.pipeline.sequencer import ChunkSequencer

__all__ = [
    "ActivityPipeline",
    "AnalysisDispatcher",
    "Chunk",
    "ChunkSequencer",
    "DispatchOutcome",
    "EventIngestor",
    "FlushResult",
    "FlushState",
    "IntervalScheduler",
    "PersistedSnapshot",
    "PersistenceGuard",
    "PipelineSession",
    "PipelineStatus",
    "ScheduledHandle",
    "Scheduler",
    "SessionExport",
    "SessionMetrics",
    "ThreadingScheduler",
]
