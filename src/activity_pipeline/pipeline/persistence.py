"""Crash-recovery snapshots and result write-through.

Snapshots are JSON files under the configured data directory, one per
session, named ``<namespace>_tracker_data_<session_id>.json``. Each save
replaces the file wholesale through a temp file and ``os.replace``, so a
crash mid-write leaves the previous snapshot intact.

Nothing here raises to the caller: storage problems are logged and the
pipeline carries on without persistence.
"""

import json
import logging
import os
import sqlite3
import tempfile
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError as PayloadValidationError

from activity_pipeline.config import PersistenceConfig
from activity_pipeline.constants import PERSISTENCE_FILE_SUFFIX, PERSISTENCE_KEY_INFIX
from activity_pipeline.exceptions import PersistenceError
from activity_pipeline.pipeline.models import Chunk, DispatchOutcome, PersistedSnapshot
from activity_pipeline.pipeline.scheduler import ScheduledHandle, Scheduler
from activity_pipeline.storage.models import StoredResult
from activity_pipeline.storage.results import ResultStore

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], PersistedSnapshot | None]

_STORE_EXCEPTIONS = (sqlite3.Error, OSError, ValueError)


class PersistenceGuard:
    """Periodic autosave, recovery lookup and result write-through."""

    def __init__(
        self,
        config: PersistenceConfig,
        scheduler: Scheduler,
        clock: Callable[[], datetime],
        result_store: ResultStore | None = None,
    ):
        self.config = config
        self.data_dir = config.get_data_dir()
        self.result_store = result_store
        self._scheduler = scheduler
        self._clock = clock
        self._provider: SnapshotProvider | None = None
        self._handle: ScheduledHandle | None = None
        self._write_lock = threading.Lock()

    # =========================================================================
    # Paths
    # =========================================================================

    @property
    def _prefix(self) -> str:
        return f"{self.config.namespace}_{PERSISTENCE_KEY_INFIX}_"

    def storage_key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def snapshot_path(self, session_id: str) -> Path:
        return self.data_dir / f"{self.storage_key(session_id)}{PERSISTENCE_FILE_SUFFIX}"

    # =========================================================================
    # Autosave
    # =========================================================================

    def start(self, snapshot_provider: SnapshotProvider) -> None:
        """Start the autosave timer.

        Args:
            snapshot_provider: Returns the snapshot to save, or None when
                there is no active session.
        """
        self.stop()
        self._provider = snapshot_provider
        if not self.config.enabled:
            return
        self._handle = self._scheduler.schedule(
            self.config.autosave_interval_seconds, self.autosave
        )
        logger.debug(f"Autosave every {self.config.autosave_interval_seconds}s")

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def autosave(self) -> bool:
        """Save the provider's snapshot if the session is active."""
        if self._provider is None:
            return False
        snapshot = self._provider()
        if snapshot is None or not snapshot.session.is_active:
            return False
        return self.save_snapshot(snapshot)

    # =========================================================================
    # Snapshot I/O
    # =========================================================================

    def save_snapshot(self, snapshot: PersistedSnapshot) -> bool:
        """Write a snapshot, keeping only the tail of its raw buffer.

        Returns:
            True if the snapshot was written.
        """
        if not self.config.enabled:
            return False
        tail = self.config.raw_tail_size
        snapshot = replace(snapshot, raw_buffer=snapshot.raw_buffer[-tail:] if tail else [])
        path = self.snapshot_path(snapshot.session.session_id)
        try:
            self._write_atomic(path, json.dumps(snapshot.to_dict(), default=str))
        except PersistenceError as e:
            logger.warning(f"Snapshot save failed: {e}")
            return False
        logger.debug(f"Saved snapshot for {snapshot.session.session_id} to {path}")
        return True

    def _write_atomic(self, path: Path, content: str) -> None:
        with self._write_lock:
            tmp_name: str | None = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, path)
                tmp_name = None
            except OSError as e:
                raise PersistenceError("Could not write snapshot", path=path, cause=e) from e
            finally:
                if tmp_name is not None and os.path.exists(tmp_name):
                    os.unlink(tmp_name)

    def _read(self, path: Path) -> PersistedSnapshot:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return PersistedSnapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, PayloadValidationError) as e:
            raise PersistenceError("Could not read snapshot", path=path, cause=e) from e

    def load_snapshot(self, session_id: str) -> PersistedSnapshot | None:
        """Load a session's snapshot, or None if missing or unreadable."""
        path = self.snapshot_path(session_id)
        if not path.exists():
            return None
        try:
            return self._read(path)
        except PersistenceError as e:
            logger.warning(f"Ignoring corrupt snapshot: {e}")
            return None

    def _is_fresh(self, snapshot: PersistedSnapshot) -> bool:
        age = self._clock() - snapshot.timestamp
        return age < timedelta(hours=self.config.stale_after_hours)

    def has_recoverable_data(self, session_id: str) -> bool:
        """Check for a fresh snapshot of a session that was still active."""
        snapshot = self.load_snapshot(session_id)
        return snapshot is not None and snapshot.session.is_active and self._is_fresh(snapshot)

    def clear(self, session_id: str) -> None:
        """Remove a session's snapshot (clean session end)."""
        path = self.snapshot_path(session_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove snapshot {path}: {e}")

    def _snapshot_files(self) -> list[Path]:
        if not self.data_dir.is_dir():
            return []
        return sorted(self.data_dir.glob(f"{self._prefix}*{PERSISTENCE_FILE_SUFFIX}"))

    def _session_id_of(self, path: Path) -> str:
        return path.name[len(self._prefix) : -len(PERSISTENCE_FILE_SUFFIX)]

    def list_recoverable(self) -> list[str]:
        """List session ids with a recoverable snapshot."""
        return [
            session_id
            for session_id in (self._session_id_of(p) for p in self._snapshot_files())
            if self.has_recoverable_data(session_id)
        ]

    def purge_stale(self) -> int:
        """Delete snapshots past the staleness bound or unreadable.

        Returns:
            Number of snapshots removed.
        """
        removed = 0
        for path in self._snapshot_files():
            try:
                snapshot = self._read(path)
                if self._is_fresh(snapshot):
                    continue
            except PersistenceError as e:
                logger.info(f"Removing unreadable snapshot: {e}")
            try:
                path.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove snapshot {path}: {e}")
        if removed:
            logger.info(f"Purged {removed} stale snapshots")
        return removed

    # =========================================================================
    # Results
    # =========================================================================

    def persist_result(
        self, chunk: Chunk, outcome: DispatchOutcome, user_id: str | None = None
    ) -> None:
        """Write a successful result through to the store and save a snapshot."""
        if self.result_store is not None:
            record = StoredResult(
                session_id=chunk.session_id,
                chunk_number=chunk.chunk_number,
                user_id=user_id,
                payload=dict(outcome.payload),
                event_count=len(chunk.optimized_events),
                raw_event_count=chunk.raw_event_count,
                created_at=outcome.completed_at or self._clock(),
            )
            try:
                self.result_store.save_result(record)
            except _STORE_EXCEPTIONS as e:
                logger.warning(f"Result store write failed for {chunk.key}: {e}", exc_info=True)
        self.autosave()

    def get_last_stored_chunk(self, session_id: str) -> int:
        if self.result_store is None:
            return 0
        try:
            return self.result_store.get_last_chunk_number(session_id)
        except _STORE_EXCEPTIONS as e:
            logger.warning(f"Could not read stored chunks for {session_id}: {e}")
            return 0
