"""Durable storage for analysis results."""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from activity_pipeline.storage.models import StoredResult

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analysis_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    chunk_number INTEGER NOT NULL,
    chunk_key TEXT NOT NULL UNIQUE,
    user_id TEXT,
    payload TEXT,
    event_count INTEGER NOT NULL DEFAULT 0,
    raw_event_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_results_session
    ON analysis_results (session_id, chunk_number);
"""


class ResultStore(ABC):
    """Long-term persistence of analysis results."""

    @abstractmethod
    def save_result(self, result: StoredResult) -> None:
        """Store a result. Saving the same chunk key twice keeps the first."""

    @abstractmethod
    def get_results(self, session_id: str) -> list[StoredResult]:
        """Return a session's results ordered by chunk number."""

    @abstractmethod
    def get_last_chunk_number(self, session_id: str) -> int:
        """Return the highest stored chunk number for a session (0 if none)."""

    def close(self) -> None:
        """Release any held resources."""
        return None


class SqliteResultStore(ResultStore):
    """SQLite-backed result store.

    Connections are thread-local because results are written from timer
    threads while the capture thread may be reading.
    """

    def __init__(self, db_path: Path):
        """Initialize the result store.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self._local = threading.local()
        self._ensure_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        conn: sqlite3.Connection = self._local.conn
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database transaction error: {e}", exc_info=True)
            raise

    def _ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.executescript(SCHEMA_SQL)

    def save_result(self, result: StoredResult) -> None:
        row = result.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO analysis_results ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            if cursor.rowcount == 0:
                logger.debug(f"Result for chunk {result.key} already stored, ignoring")
            else:
                result.id = cursor.lastrowid

    def get_results(self, session_id: str) -> list[StoredResult]:
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT * FROM analysis_results WHERE session_id = ? ORDER BY chunk_number",
            (session_id,),
        )
        return [StoredResult.from_row(row) for row in cursor.fetchall()]

    def get_last_chunk_number(self, session_id: str) -> int:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT MAX(chunk_number) FROM analysis_results WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def close(self) -> None:
        """Close the current thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
