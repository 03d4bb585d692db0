"""Core ActivityPipeline class and lifecycle orchestration.

Main class that wires the ingestor, compaction engine, flush scheduler,
dispatcher and persistence guard together around one session.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from activity_pipeline.analysis.base import BaseAnalyzer
from activity_pipeline.compaction.core import CompactionEngine
from activity_pipeline.compaction.models import CompactionStats
from activity_pipeline.config import PipelineConfig
from activity_pipeline.constants import (
    MAX_IN_MEMORY_RESULTS,
    TRIGGER_EMERGENCY,
    TRIGGER_FINAL_STOP,
    TRIGGER_MANUAL,
)
from activity_pipeline.events.models import OptimizedEvent, RawEvent
from activity_pipeline.exceptions import PipelineError
from activity_pipeline.pipeline.dispatcher import AnalysisDispatcher, ResultListener
from activity_pipeline.pipeline.ingestor import EventIngestor
from activity_pipeline.pipeline.metrics import SessionMetrics
from activity_pipeline.pipeline.models import (
    Chunk,
    DispatchContext,
    DispatchOutcome,
    DrainedFlush,
    FlushResult,
    FlushState,
    PersistedSnapshot,
    PipelineSession,
    PipelineStatus,
    PreparedFlush,
    SessionExport,
)
from activity_pipeline.pipeline.persistence import PersistenceGuard
from activity_pipeline.pipeline.scheduler import IntervalScheduler, Scheduler, ThreadingScheduler
from activity_pipeline.pipeline.sequencer import ChunkSequencer
from activity_pipeline.storage.results import ResultStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ActivityPipeline:
    """Compaction and interval-batching pipeline for one capture session.

    All state lives on the instance. Entry points may be called from the
    capture thread, timer threads and manual callers concurrently; they
    serialize on one re-entrant lock that is never held across compaction
    or the analysis call.
    """

    def __init__(
        self,
        analyzer: BaseAnalyzer,
        config: PipelineConfig | None = None,
        scheduler: Scheduler | None = None,
        result_store: ResultStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the pipeline.

        Args:
            analyzer: Client of the analysis service.
            config: Pipeline configuration (defaults if omitted).
            scheduler: Timer facility (daemon threads if omitted).
            result_store: Durable store for analysis results.
            clock: Source of "now" (UTC wall clock if omitted).
        """
        self.config = config or PipelineConfig()
        self._clock = clock or _utc_now
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.RLock()

        self._session: PipelineSession | None = None
        self._optimized_buffer: list[OptimizedEvent] = []
        self._in_flight_batch: list[OptimizedEvent] | None = None
        self._draining: list[RawEvent] = []
        self._retained_raw_count = 0
        self._results: deque[DispatchOutcome] = deque(maxlen=MAX_IN_MEMORY_RESULTS)
        self._last_flush_at: datetime | None = None

        self.engine = CompactionEngine(self.config.compaction)
        self.sequencer = ChunkSequencer()
        self.ingestor = EventIngestor(
            lock=self._lock,
            clock=self._clock,
            is_active=self._is_active,
            on_cap_exceeded=self._on_cap_exceeded,
            emergency_raw_cap=self.config.emergency_raw_cap,
        )
        self.persistence = PersistenceGuard(
            self.config.persistence,
            self._scheduler,
            clock=self._clock,
            result_store=result_store,
        )
        self.dispatcher = AnalysisDispatcher(
            analyzer,
            self.sequencer,
            clock=self._clock,
            persistence=self.persistence,
        )
        # Registered first so bookkeeping happens before any caller listener
        # and before the post-result snapshot is taken
        self.dispatcher.add_listener(self._on_outcome)
        self.interval = IntervalScheduler(
            self._scheduler,
            self._lock,
            begin=self._begin_flush,
            prepare=self._prepare_flush,
            complete=self._complete_flush,
            interval_minutes=self.config.interval_minutes,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _is_active(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def session(self) -> PipelineSession | None:
        return self._session

    def start(
        self,
        session_id: str,
        user_id: str | None = None,
        daily_goal: str | None = None,
    ) -> PipelineSession:
        """Start a capture session, stopping any active one first.

        Args:
            session_id: Identifier of the new session.
            user_id: Optional user identifier sent with each chunk.
            daily_goal: Optional goal text sent with each chunk.

        Returns:
            The new session.
        """
        if self._is_active():
            logger.info(f"Stopping active session {self._session.session_id} before start")
            self.stop()

        with self._lock:
            self.interval.cancel_pending_final_flush()
            self._session = PipelineSession(
                session_id=session_id,
                user_id=user_id,
                daily_goal=daily_goal,
                started_at=self._clock(),
            )
            self._reset_buffers()
            self.sequencer.start_session(session_id)
            self._last_flush_at = None

        self.interval.start()
        self.persistence.start(self._build_snapshot)
        logger.info(f"Started activity pipeline for session {session_id}")
        return self._session

    def stop(self) -> SessionExport:
        """Stop the session and export what is left.

        Runs a final flush of the raw buffer. When a flush is already in
        flight, the final flush is queued behind it instead and its result
        is not part of the returned export.

        Returns:
            SessionExport with remaining events, results and metrics.
        """
        self.interval.stop()
        self.persistence.stop()

        with self._lock:
            session = self._session
            if session is None or not session.is_active:
                logger.debug("Stop requested with no active session")
                return SessionExport(session=session)
            session.is_active = False
            has_pending = self.ingestor.size > 0 or bool(self._optimized_buffer)

        if has_pending:
            self.interval.request_flush(TRIGGER_FINAL_STOP)

        with self._lock:
            export = SessionExport(
                session=session,
                raw_events=self._pending_raw_events(),
                optimized_events=list(self._optimized_buffer),
                results=list(self._results),
                metrics=self.ingestor.metrics.to_dict(),
            )

        self.persistence.clear(session.session_id)
        logger.info(
            f"Stopped session {session.session_id}: {len(export.results)} results, "
            f"{len(export.optimized_events)} undelivered events"
        )
        return export

    def full_reset(self) -> None:
        """Drop the session and every buffer without flushing."""
        self.interval.stop()
        self.persistence.stop()
        with self._lock:
            self.interval.cancel_pending_final_flush()
            if self._session is not None:
                self.persistence.clear(self._session.session_id)
            self._session = None
            self._reset_buffers()
            self._last_flush_at = None
        logger.info("Activity pipeline fully reset")

    def _reset_buffers(self) -> None:
        self.ingestor.reset()
        self._optimized_buffer = []
        self._in_flight_batch = None
        self._draining = []
        self._retained_raw_count = 0
        self._results.clear()

    def recover_session(self, session_id: str) -> bool:
        """Resume a session from its crash-recovery snapshot.

        Returns:
            True if a fresh snapshot of an active session was restored.
        """
        if not self.persistence.has_recoverable_data(session_id):
            logger.info(f"No recoverable data for session {session_id}")
            return False
        snapshot = self.persistence.load_snapshot(session_id)
        if snapshot is None:
            return False

        if self._is_active():
            self.stop()

        last_chunk = max(
            snapshot.chunk_number, self.persistence.get_last_stored_chunk(session_id)
        )
        with self._lock:
            self.interval.cancel_pending_final_flush()
            self._session = snapshot.session
            self._session.is_active = True
            self._results.clear()
            self.ingestor.reset(
                metrics=SessionMetrics.from_dict(snapshot.metrics),
                events=snapshot.raw_buffer,
            )
            self._optimized_buffer = list(snapshot.optimized_buffer)
            self._in_flight_batch = None
            self._draining = []
            self._retained_raw_count = 0
            self.sequencer.restore(session_id, last_chunk)

        self.interval.start()
        self.persistence.start(self._build_snapshot)
        logger.info(
            f"Recovered session {session_id}: {len(snapshot.raw_buffer)} raw events, "
            f"{len(snapshot.optimized_buffer)} retained events, chunk {last_chunk}"
        )
        return True

    # =========================================================================
    # Intake and control
    # =========================================================================

    def add_raw_event(self, event: RawEvent | Mapping[str, Any]) -> bool:
        """Buffer one raw event from the capture source.

        Returns:
            True if the event was buffered.
        """
        return self.ingestor.append(event)

    def trigger_manual_flush(self) -> FlushResult | None:
        """Flush now.

        Returns:
            The flush result, or None when a flush is already in flight.
        """
        return self.interval.request_flush(TRIGGER_MANUAL)

    def set_interval_duration(self, minutes: float) -> None:
        """Change the periodic flush interval.

        Raises:
            ValidationError: If ``minutes`` is not positive; the previous
                interval stays in effect.
        """
        self.interval.set_interval(minutes)
        self.config.interval_minutes = minutes

    def add_result_listener(self, listener: ResultListener) -> None:
        """Register a callback invoked with every dispatch outcome."""
        self.dispatcher.add_listener(listener)

    def get_results(self) -> list[DispatchOutcome]:
        with self._lock:
            return list(self._results)

    def get_status(self) -> PipelineStatus:
        with self._lock:
            session = self._session
            return PipelineStatus(
                session_id=session.session_id if session else None,
                is_active=self._is_active(),
                flush_state=self.interval.state,
                raw_buffer_size=self.ingestor.size,
                optimized_buffer_size=len(self._optimized_buffer),
                last_chunk_number=self.sequencer.last_chunk_number,
                interval_minutes=self.interval.interval_minutes,
                result_count=len(self._results),
                total_raw_events=self.ingestor.metrics.total_raw_events,
                last_flush_at=self._last_flush_at,
            )

    def close(self) -> None:
        """Stop timers and release the analyzer and result store."""
        if self._is_active():
            self.stop()
        self.interval.stop()
        self.persistence.stop()
        self.dispatcher.analyzer.close()
        if self.persistence.result_store is not None:
            self.persistence.result_store.close()

    # =========================================================================
    # Flush cycle
    # =========================================================================

    def _on_cap_exceeded(self) -> None:
        if self.interval.state is FlushState.FLUSH_IN_PROGRESS:
            return
        logger.warning(
            f"Raw buffer exceeds cap of {self.ingestor.emergency_raw_cap}, forcing flush"
        )
        self.interval.request_flush(TRIGGER_EMERGENCY, background=True)

    def _begin_flush(self, trigger: str) -> DrainedFlush:
        """Hand the raw buffer to a flush cycle. Called with the lock held."""
        raw = self.ingestor.swap()
        self._draining = raw
        return DrainedFlush(trigger=trigger, session=self._session, raw_events=raw)

    def _prepare_flush(self, drained: DrainedFlush) -> PreparedFlush:
        """Compact outside the lock, then merge and number under it."""
        raw = drained.raw_events
        optimized, stats = self.engine.compact_with_stats(raw)
        with self._lock:
            if self._draining is raw:
                self._draining = []
            return self._number_batch(drained, optimized, stats)

    def _number_batch(
        self, drained: DrainedFlush, optimized: list[OptimizedEvent], stats: CompactionStats
    ) -> PreparedFlush:
        trigger = drained.trigger
        raw = drained.raw_events
        session = drained.session

        if session is None or session is not self._session:
            if raw:
                logger.warning(f"Discarding {len(raw)} raw events of a session that ended")
            return PreparedFlush(trigger=trigger, session_id="", raw_event_count=0, stats=stats)

        session_id = session.session_id
        self.ingestor.metrics.record_compaction(len(raw), len(optimized))
        if optimized:
            batch = sorted([*self._optimized_buffer, *optimized], key=lambda e: e.timestamp)
        else:
            batch = self._optimized_buffer
        self._optimized_buffer = batch
        self._retained_raw_count += len(raw)

        if not batch:
            logger.debug(f"Nothing to dispatch for {trigger}")
            return PreparedFlush(
                trigger=trigger, session_id=session_id, raw_event_count=len(raw), stats=stats
            )

        now = self._clock()
        chunk = Chunk(
            session_id=session_id,
            chunk_number=self.sequencer.next_chunk(session_id),
            optimized_events=tuple(batch),
            raw_event_count=self._retained_raw_count,
        )
        metrics = self.ingestor.metrics
        context = DispatchContext(
            user_id=session.user_id,
            daily_goal=session.daily_goal,
            window_start=self._last_flush_at or session.started_at,
            window_end=now,
            app_usage=dict(metrics.app_event_counts),
            keystroke_count=metrics.keystroke_count,
            click_count=metrics.click_count,
            metrics=metrics.to_dict(),
        )
        self._in_flight_batch = batch
        self._last_flush_at = now
        logger.info(
            f"Flush ({trigger}): {len(raw)} raw -> {len(optimized)} optimized, "
            f"chunk {chunk.chunk_number} with {len(batch)} events"
        )
        return PreparedFlush(
            trigger=trigger,
            session_id=session_id,
            raw_event_count=len(raw),
            stats=stats,
            chunk=chunk,
            context=context,
            batch=batch,
        )

    def _complete_flush(self, prepared: PreparedFlush) -> FlushResult:
        """Dispatch a numbered chunk without holding the lock."""
        if prepared.chunk is None:
            raise PipelineError(f"Flush ({prepared.trigger}) has no chunk to dispatch")
        outcome = self.dispatcher.dispatch(prepared.chunk, prepared.context)
        with self._lock:
            if self._in_flight_batch is prepared.batch:
                self._in_flight_batch = None
        return FlushResult(
            trigger=prepared.trigger,
            raw_event_count=prepared.raw_event_count,
            optimized_count=prepared.stats.optimized_count,
            chunk_number=prepared.chunk.chunk_number,
            stats=prepared.stats,
            outcome=outcome,
        )

    def _on_outcome(self, outcome: DispatchOutcome) -> None:
        with self._lock:
            session = self._session
            if session is None or outcome.chunk.session_id != session.session_id:
                return
            if outcome.success:
                self._results.append(outcome)
                if (
                    self._in_flight_batch is not None
                    and self._optimized_buffer is self._in_flight_batch
                ):
                    self._optimized_buffer = []
                    self._retained_raw_count = 0
            elif outcome.failed:
                logger.info(
                    f"Retaining {len(self._optimized_buffer)} events for retry after "
                    f"chunk {outcome.chunk.chunk_number} failed"
                )

    def _pending_raw_events(self) -> list[RawEvent]:
        # Events still being compacted count as pending until they are numbered
        return [*self._draining, *self.ingestor.snapshot()]

    def _build_snapshot(self) -> PersistedSnapshot | None:
        with self._lock:
            if self._session is None:
                return None
            return PersistedSnapshot(
                session=PipelineSession(**vars(self._session)),
                chunk_number=self.sequencer.last_chunk_number,
                timestamp=self._clock(),
                raw_buffer=self._pending_raw_events(),
                optimized_buffer=list(self._optimized_buffer),
                metrics=self.ingestor.metrics.to_dict(),
            )
