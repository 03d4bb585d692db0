"""Tests for the flush state machine and timer facilities."""

import threading
from unittest.mock import MagicMock

import pytest

from activity_pipeline.compaction.models import CompactionStats
from activity_pipeline.constants import (
    TRIGGER_EMERGENCY,
    TRIGGER_FINAL_STOP,
    TRIGGER_MANUAL,
    TRIGGER_PERIODIC,
)
from activity_pipeline.exceptions import ValidationError
from activity_pipeline.pipeline.models import (
    Chunk,
    DrainedFlush,
    FlushResult,
    FlushState,
    PreparedFlush,
)
from activity_pipeline.pipeline.scheduler import IntervalScheduler, ThreadingScheduler

from .conftest import ManualScheduler
from .fixtures import TEST_SESSION_ID


class FlushRecorder:
    """Fake flush steps that record what the scheduler asked for."""

    def __init__(self, lock: threading.RLock, has_chunk: bool = True):
        self.lock = lock
        self.has_chunk = has_chunk
        self.begun: list[str] = []
        self.prepared: list[str] = []
        self.completed: list[str] = []
        self.on_complete: MagicMock = MagicMock()
        self.scheduler: IntervalScheduler | None = None
        self.state_during_prepare: FlushState | None = None
        self.state_during_complete: FlushState | None = None
        self.lock_free_during_prepare: bool | None = None

    def begin(self, trigger: str) -> DrainedFlush:
        self.begun.append(trigger)
        return DrainedFlush(trigger=trigger, session=None)

    def _lock_free_elsewhere(self) -> bool:
        acquired: list[bool] = []

        def try_lock() -> None:
            got = self.lock.acquire(blocking=False)
            if got:
                self.lock.release()
            acquired.append(got)

        thread = threading.Thread(target=try_lock)
        thread.start()
        thread.join()
        return acquired[0]

    def prepare(self, drained: DrainedFlush) -> PreparedFlush:
        self.prepared.append(drained.trigger)
        if self.scheduler is not None:
            self.state_during_prepare = self.scheduler.state
        self.lock_free_during_prepare = self._lock_free_elsewhere()
        chunk = Chunk(TEST_SESSION_ID, len(self.prepared)) if self.has_chunk else None
        return PreparedFlush(
            trigger=drained.trigger,
            session_id=TEST_SESSION_ID,
            raw_event_count=1,
            stats=CompactionStats(raw_count=1),
            chunk=chunk,
        )

    def complete(self, prepared: PreparedFlush) -> FlushResult:
        self.completed.append(prepared.trigger)
        if self.scheduler is not None:
            self.state_during_complete = self.scheduler.state
        self.on_complete(prepared)
        return FlushResult(trigger=prepared.trigger, chunk_number=prepared.chunk.chunk_number)


@pytest.fixture
def flush_lock() -> threading.RLock:
    return threading.RLock()


@pytest.fixture
def recorder(flush_lock: threading.RLock) -> FlushRecorder:
    return FlushRecorder(flush_lock)


@pytest.fixture
def interval(
    scheduler: ManualScheduler, recorder: FlushRecorder, flush_lock: threading.RLock
) -> IntervalScheduler:
    interval = IntervalScheduler(
        scheduler,
        flush_lock,
        begin=recorder.begin,
        prepare=recorder.prepare,
        complete=recorder.complete,
        interval_minutes=10,
    )
    recorder.scheduler = interval
    return interval


class TestTimer:
    def test_start_schedules_interval(
        self, interval: IntervalScheduler, scheduler: ManualScheduler
    ):
        interval.start()
        assert interval.is_running
        assert len(scheduler.active_jobs(600)) == 1

    def test_tick_requests_periodic_flush(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, recorder: FlushRecorder
    ):
        interval.start()
        scheduler.fire(600)
        assert recorder.begun == [TRIGGER_PERIODIC]
        assert recorder.completed == [TRIGGER_PERIODIC]

    def test_stop_cancels_timer(self, interval: IntervalScheduler, scheduler: ManualScheduler):
        interval.start()
        interval.stop()
        assert not interval.is_running
        assert scheduler.active_jobs() == []

    def test_restart_replaces_timer(self, interval: IntervalScheduler, scheduler: ManualScheduler):
        interval.start()
        interval.start()
        assert len(scheduler.active_jobs()) == 1


class TestSetInterval:
    def test_restarts_running_timer(self, interval: IntervalScheduler, scheduler: ManualScheduler):
        interval.start()
        interval.set_interval(2)
        assert interval.interval_minutes == 2
        assert scheduler.active_jobs(600) == []
        assert len(scheduler.active_jobs(120)) == 1

    def test_stopped_timer_stays_stopped(
        self, interval: IntervalScheduler, scheduler: ManualScheduler
    ):
        interval.set_interval(5)
        assert interval.interval_minutes == 5
        assert scheduler.active_jobs() == []

    @pytest.mark.parametrize("minutes", [0, -1])
    def test_non_positive_rejected_and_previous_kept(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, minutes: float
    ):
        interval.start()
        with pytest.raises(ValidationError):
            interval.set_interval(minutes)
        assert interval.interval_minutes == 10
        assert len(scheduler.active_jobs(600)) == 1


class TestRequestFlush:
    def test_synchronous_flush(self, interval: IntervalScheduler, recorder: FlushRecorder):
        result = interval.request_flush(TRIGGER_MANUAL)
        assert result is not None
        assert result.chunk_number == 1
        assert recorder.state_during_prepare is FlushState.FLUSH_IN_PROGRESS
        assert recorder.state_during_complete is FlushState.FLUSH_IN_PROGRESS
        assert interval.state is FlushState.IDLE

    def test_prepare_runs_without_lock(
        self, interval: IntervalScheduler, recorder: FlushRecorder
    ):
        interval.request_flush(TRIGGER_MANUAL)
        assert recorder.lock_free_during_prepare is True

    def test_nothing_to_send_skips_complete(
        self, interval: IntervalScheduler, recorder: FlushRecorder
    ):
        recorder.has_chunk = False
        result = interval.request_flush(TRIGGER_MANUAL)
        assert result is not None
        assert result.chunk_number is None
        assert recorder.completed == []
        assert interval.state is FlushState.IDLE

    def test_background_flush_returns_immediately(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, recorder: FlushRecorder
    ):
        assert interval.request_flush(TRIGGER_EMERGENCY, background=True) is None
        assert recorder.begun == [TRIGGER_EMERGENCY]
        assert recorder.prepared == []
        assert recorder.completed == []
        assert interval.state is FlushState.FLUSH_IN_PROGRESS

        scheduler.run_pending()

        assert recorder.prepared == [TRIGGER_EMERGENCY]
        assert recorder.completed == [TRIGGER_EMERGENCY]
        assert interval.state is FlushState.IDLE

    def test_request_while_in_flight_is_noop(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, recorder: FlushRecorder
    ):
        interval.request_flush(TRIGGER_EMERGENCY, background=True)

        assert interval.request_flush(TRIGGER_MANUAL) is None
        assert interval.request_flush(TRIGGER_PERIODIC) is None
        assert recorder.begun == [TRIGGER_EMERGENCY]

    def test_final_flush_queued_behind_in_flight_cycle(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, recorder: FlushRecorder
    ):
        interval.request_flush(TRIGGER_EMERGENCY, background=True)
        assert interval.request_flush(TRIGGER_FINAL_STOP) is None
        assert interval.final_flush_pending

        scheduler.run_pending()

        assert recorder.begun == [TRIGGER_EMERGENCY, TRIGGER_FINAL_STOP]
        assert recorder.completed == [TRIGGER_EMERGENCY, TRIGGER_FINAL_STOP]
        assert not interval.final_flush_pending

    def test_cancel_pending_final_flush(
        self, interval: IntervalScheduler, scheduler: ManualScheduler, recorder: FlushRecorder
    ):
        interval.request_flush(TRIGGER_EMERGENCY, background=True)
        interval.request_flush(TRIGGER_FINAL_STOP)
        interval.cancel_pending_final_flush()

        scheduler.run_pending()

        assert recorder.begun == [TRIGGER_EMERGENCY]

    def test_state_reset_when_complete_raises(
        self, interval: IntervalScheduler, recorder: FlushRecorder
    ):
        recorder.on_complete.side_effect = RuntimeError("dispatch bug")
        with pytest.raises(RuntimeError):
            interval.request_flush(TRIGGER_MANUAL)
        assert interval.state is FlushState.IDLE


class TestThreadingScheduler:
    def test_schedule_runs_repeatedly_until_cancelled(self):
        ran = threading.Event()
        calls: list[int] = []

        def callback() -> None:
            calls.append(1)
            if len(calls) >= 2:
                ran.set()

        handle = ThreadingScheduler().schedule(0.01, callback)
        try:
            assert ran.wait(timeout=5)
        finally:
            handle.cancel()
        assert handle.cancelled
        assert len(calls) >= 2

    def test_cancel_before_first_run(self):
        callback = MagicMock()
        handle = ThreadingScheduler().schedule(60, callback)
        handle.cancel()
        handle.cancel()
        assert handle.cancelled
        callback.assert_not_called()

    def test_submit_runs_off_thread(self):
        done = threading.Event()
        threads: list[str] = []

        def callback() -> None:
            threads.append(threading.current_thread().name)
            done.set()

        ThreadingScheduler().submit(callback)
        assert done.wait(timeout=5)
        assert threads == ["activity-pipeline-flush"]
