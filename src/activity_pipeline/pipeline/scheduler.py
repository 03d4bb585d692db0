"""Timers and the flush state machine.

``Scheduler`` abstracts the timer facility so the pipeline never touches
``threading.Timer`` directly; tests substitute a manual implementation.
``IntervalScheduler`` drives flush cycles on top of it and guarantees that
at most one cycle is in flight per pipeline.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from activity_pipeline.config import validate_interval_minutes
from activity_pipeline.constants import TRIGGER_FINAL_STOP, TRIGGER_PERIODIC
from activity_pipeline.pipeline.models import DrainedFlush, FlushResult, FlushState, PreparedFlush

logger = logging.getLogger(__name__)


class ScheduledHandle(ABC):
    """Handle of a repeating job."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the job. Safe to call more than once."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """Whether ``cancel`` has been called."""


class Scheduler(ABC):
    """Timer facility used by the pipeline."""

    @abstractmethod
    def schedule(self, interval_seconds: float, callback: Callable[[], None]) -> ScheduledHandle:
        """Run ``callback`` every ``interval_seconds`` until cancelled."""

    @abstractmethod
    def submit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once, as soon as possible, off the caller's thread."""


class _TimerHandle(ScheduledHandle):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._cancelled = False

    def _set_timer(self, timer: threading.Timer) -> bool:
        with self._lock:
            if self._cancelled:
                return False
            self._timer = timer
            return True

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled


class ThreadingScheduler(Scheduler):
    """Scheduler backed by daemon ``threading.Timer`` threads."""

    def schedule(self, interval_seconds: float, callback: Callable[[], None]) -> ScheduledHandle:
        handle = _TimerHandle()

        def run_and_reschedule() -> None:
            if handle.cancelled:
                return
            try:
                callback()
            finally:
                _start_timer()

        def _start_timer() -> None:
            timer = threading.Timer(interval_seconds, run_and_reschedule)
            timer.daemon = True
            if handle._set_timer(timer):
                timer.start()

        _start_timer()
        return handle

    def submit(self, callback: Callable[[], None]) -> None:
        thread = threading.Thread(target=callback, name="activity-pipeline-flush", daemon=True)
        thread.start()


class IntervalScheduler:
    """Periodic flush timer plus the single flush entry point.

    A flush cycle has three steps. ``begin`` runs under the owner's lock
    and only swaps out the raw buffer. ``prepare`` compacts outside the
    lock and numbers the batch under it. ``complete`` talks to the
    analysis service without the lock. The scheduler holds the state
    across all three so overlapping cycles cannot happen.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        lock: threading.RLock,
        begin: Callable[[str], DrainedFlush],
        prepare: Callable[[DrainedFlush], PreparedFlush],
        complete: Callable[[PreparedFlush], FlushResult],
        interval_minutes: float,
    ):
        """Initialize the interval scheduler.

        Args:
            scheduler: Timer facility.
            lock: The owning pipeline's lock.
            begin: Takes the raw buffer; called with the lock held.
            prepare: Compacts and numbers the taken events.
            complete: Dispatches a prepared chunk.
            interval_minutes: Minutes between periodic flushes.
        """
        validate_interval_minutes(interval_minutes)
        self._scheduler = scheduler
        self._lock = lock
        self._begin = begin
        self._prepare = prepare
        self._complete = complete
        self._interval_minutes = interval_minutes
        self._handle: ScheduledHandle | None = None
        self._state = FlushState.IDLE
        self._final_flush_pending = False

    @property
    def state(self) -> FlushState:
        with self._lock:
            return self._state

    @property
    def interval_minutes(self) -> float:
        return self._interval_minutes

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._handle is not None

    @property
    def final_flush_pending(self) -> bool:
        with self._lock:
            return self._final_flush_pending

    def start(self) -> None:
        """Start (or restart) the periodic timer."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = self._scheduler.schedule(
                self._interval_minutes * 60, self._on_timer
            )
        logger.info(f"Scheduled periodic flush every {self._interval_minutes} minutes")

    def stop(self) -> None:
        """Cancel the periodic timer. An in-flight cycle runs to completion."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def set_interval(self, minutes: float) -> None:
        """Change the periodic interval, restarting the timer if running.

        Raises:
            ValidationError: If ``minutes`` is not a positive number. The
                previous interval stays in effect.
        """
        validate_interval_minutes(minutes)
        with self._lock:
            self._interval_minutes = minutes
            running = self._handle is not None
        if running:
            self.start()
        logger.info(f"Flush interval set to {minutes} minutes")

    def cancel_pending_final_flush(self) -> None:
        with self._lock:
            if self._final_flush_pending:
                logger.warning("Dropping queued final flush")
            self._final_flush_pending = False

    def _on_timer(self) -> None:
        self.request_flush(TRIGGER_PERIODIC)

    def request_flush(self, trigger: str, background: bool = False) -> FlushResult | None:
        """Run a flush cycle unless one is already in flight.

        Only the buffer swap happens on the calling thread when
        ``background`` is set; compaction and dispatch follow through the
        scheduler.

        Args:
            trigger: Why the flush was requested.
            background: Continue the cycle through the scheduler and
                return immediately (used from inside ``append``).

        Returns:
            The flush result; None when the request was skipped or the
            cycle continues in the background.
        """
        with self._lock:
            if self._state is FlushState.FLUSH_IN_PROGRESS:
                if trigger == TRIGGER_FINAL_STOP:
                    self._final_flush_pending = True
                    logger.info("Flush in progress, final flush queued")
                else:
                    logger.debug(f"Flush already in progress, skipping {trigger}")
                return None

            drained = self._begin(trigger)
            self._state = FlushState.FLUSH_IN_PROGRESS

        if background:
            self._scheduler.submit(lambda: self._run_cycle(drained))
            return None
        return self._run_cycle(drained)

    def _run_cycle(self, drained: DrainedFlush) -> FlushResult:
        try:
            prepared = self._prepare(drained)
            if prepared.chunk is None:
                return FlushResult(
                    trigger=prepared.trigger,
                    raw_event_count=prepared.raw_event_count,
                    stats=prepared.stats,
                )
            return self._complete(prepared)
        finally:
            with self._lock:
                self._state = FlushState.IDLE
                run_final = self._final_flush_pending
                self._final_flush_pending = False
            if run_final:
                self.request_flush(TRIGGER_FINAL_STOP)
