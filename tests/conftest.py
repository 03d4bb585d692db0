"""Pytest configuration and fixtures for activity-pipeline tests.

Timers and "now" are injected into the pipeline, so tests drive them by
hand: ``ManualScheduler`` records scheduled jobs and runs them only when
fired, and ``ManualClock`` returns a fixed time until advanced.
"""

import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from activity_pipeline.analysis import RecordingAnalyzer
from activity_pipeline.config import PersistenceConfig, PipelineConfig
from activity_pipeline.constants import LOGGER_NAME
from activity_pipeline.pipeline import ActivityPipeline
from activity_pipeline.pipeline.scheduler import ScheduledHandle, Scheduler
from activity_pipeline.storage import SqliteResultStore

from .fixtures import TEST_NOW

# =============================================================================
# Deterministic timers and clock
# =============================================================================


class ManualJob(ScheduledHandle):
    """A repeating job that only runs when its scheduler fires it."""

    def __init__(self, interval_seconds: float, callback: Callable[[], None]):
        self.interval_seconds = interval_seconds
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler that runs nothing on its own."""

    def __init__(self) -> None:
        self.jobs: list[ManualJob] = []
        self.submitted: list[Callable[[], None]] = []

    def schedule(self, interval_seconds: float, callback: Callable[[], None]) -> ManualJob:
        job = ManualJob(interval_seconds, callback)
        self.jobs.append(job)
        return job

    def submit(self, callback: Callable[[], None]) -> None:
        self.submitted.append(callback)

    def active_jobs(self, interval_seconds: float | None = None) -> list[ManualJob]:
        return [
            job
            for job in self.jobs
            if not job.cancelled
            and (interval_seconds is None or job.interval_seconds == interval_seconds)
        ]

    def fire(self, interval_seconds: float | None = None) -> int:
        """Run every active job (optionally only those with the given interval)."""
        jobs = self.active_jobs(interval_seconds)
        for job in jobs:
            job.callback()
        return len(jobs)

    def run_pending(self) -> int:
        """Run submitted one-shot callbacks, including ones they submit."""
        count = 0
        while self.submitted:
            self.submitted.pop(0)()
            count += 1
        return count


class ManualClock:
    """Clock returning a fixed time until advanced."""

    def __init__(self, now: datetime = TEST_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _restore_package_logger() -> Iterator[None]:
    """Undo configure_logging so later tests see records through the root logger."""
    yield
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def analyzer() -> RecordingAnalyzer:
    return RecordingAnalyzer()


@pytest.fixture
def persistence_config(tmp_path: Path) -> PersistenceConfig:
    """Persistence rooted in a temporary directory."""
    return PersistenceConfig(data_dir=str(tmp_path / "data"))


@pytest.fixture
def pipeline_config(persistence_config: PersistenceConfig) -> PipelineConfig:
    return PipelineConfig(persistence=persistence_config)


@pytest.fixture
def result_store(tmp_path: Path) -> Iterator[SqliteResultStore]:
    store = SqliteResultStore(tmp_path / "results.db")
    yield store
    store.close()


@pytest.fixture
def pipeline(
    analyzer: RecordingAnalyzer,
    pipeline_config: PipelineConfig,
    scheduler: ManualScheduler,
    result_store: SqliteResultStore,
    clock: ManualClock,
) -> ActivityPipeline:
    """Pipeline with manual timers, a fixed clock and a recording analyzer."""
    return ActivityPipeline(
        analyzer,
        config=pipeline_config,
        scheduler=scheduler,
        result_store=result_store,
        clock=clock,
    )
