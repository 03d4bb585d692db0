"""Hand compacted chunks to the analysis service exactly once."""

import logging
from collections.abc import Callable
from datetime import datetime

from activity_pipeline.analysis.base import AnalysisRequest, AnalysisResult, BaseAnalyzer
from activity_pipeline.constants import (
    DISPATCH_STATUS_DUPLICATE,
    DISPATCH_STATUS_FAILED,
    DISPATCH_STATUS_SUCCESS,
)
from activity_pipeline.exceptions import AnalysisError
from activity_pipeline.pipeline.models import Chunk, DispatchContext, DispatchOutcome
from activity_pipeline.pipeline.persistence import PersistenceGuard
from activity_pipeline.pipeline.sequencer import ChunkSequencer

logger = logging.getLogger(__name__)

ResultListener = Callable[[DispatchOutcome], None]


class AnalysisDispatcher:
    """Send chunks to the analyzer with duplicate suppression.

    Dispatch never raises. Analyzer errors become a failed outcome; the
    caller keeps the batch and retries on its next cycle.
    """

    def __init__(
        self,
        analyzer: BaseAnalyzer,
        sequencer: ChunkSequencer,
        clock: Callable[[], datetime],
        persistence: PersistenceGuard | None = None,
    ):
        self.analyzer = analyzer
        self.sequencer = sequencer
        self.persistence = persistence
        self._clock = clock
        self._listeners: list[ResultListener] = []

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ResultListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, outcome: DispatchOutcome) -> None:
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception as e:
                logger.error(f"Result listener failed: {e}", exc_info=True)

    def _call_analyzer(self, request: AnalysisRequest) -> AnalysisResult:
        try:
            result = self.analyzer.analyze(request)
        except Exception as e:
            raise AnalysisError(
                "Analyzer raised",
                session_id=request.session_id,
                chunk_number=request.chunk_number,
                cause=e,
            ) from e
        if not result.success:
            raise AnalysisError(
                result.error or "Analysis unsuccessful",
                session_id=request.session_id,
                chunk_number=request.chunk_number,
            )
        return result

    def dispatch(self, chunk: Chunk, context: DispatchContext | None = None) -> DispatchOutcome:
        """Send one chunk for analysis.

        Args:
            chunk: The chunk to analyze.
            context: Session context sent alongside the events.

        Returns:
            DispatchOutcome with status ``success``, ``failed`` or ``duplicate``.
        """
        if not self.sequencer.claim(chunk):
            logger.info(f"Chunk {chunk.key} already dispatched, skipping")
            return DispatchOutcome(status=DISPATCH_STATUS_DUPLICATE, chunk=chunk)

        context = context or DispatchContext()
        request = AnalysisRequest(
            session_id=chunk.session_id,
            chunk_number=chunk.chunk_number,
            events=list(chunk.optimized_events),
            user_id=context.user_id,
            daily_goal=context.daily_goal,
            window_start=context.window_start,
            window_end=context.window_end,
            app_usage=dict(context.app_usage),
            keystroke_count=context.keystroke_count,
            click_count=context.click_count,
            metrics=dict(context.metrics),
            raw_event_count=chunk.raw_event_count,
        )

        logger.info(
            f"Dispatching chunk {chunk.key} ({len(chunk.optimized_events)} events, "
            f"{chunk.raw_event_count} raw)"
        )
        try:
            result = self._call_analyzer(request)
        except AnalysisError as e:
            self.sequencer.release(chunk)
            logger.warning(f"Analysis of chunk {chunk.key} failed: {e}")
            outcome = DispatchOutcome(
                status=DISPATCH_STATUS_FAILED,
                chunk=chunk,
                error=str(e),
                completed_at=self._clock(),
            )
            self._notify(outcome)
            return outcome

        self.sequencer.mark_dispatched(chunk)
        outcome = DispatchOutcome(
            status=DISPATCH_STATUS_SUCCESS,
            chunk=chunk,
            payload=result.payload,
            completed_at=self._clock(),
        )
        self._notify(outcome)
        if self.persistence is not None:
            self.persistence.persist_result(chunk, outcome, user_id=context.user_id)
        return outcome
