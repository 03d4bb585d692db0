"""Session-scoped chunk numbering and dispatch deduplication."""

import logging
import threading

from activity_pipeline.exceptions import SessionError
from activity_pipeline.pipeline.models import Chunk, chunk_key

logger = logging.getLogger(__name__)


class ChunkSequencer:
    """Hands out chunk numbers and remembers which chunks were sent.

    A chunk key is *claimed* while its dispatch is in flight and *marked
    dispatched* once the analysis succeeded. Both count as duplicates, so
    a resubmission racing an in-flight dispatch is suppressed too.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_id: str | None = None
        self._counter = 0
        self._dispatched: set[str] = set()
        self._in_flight: set[str] = set()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def last_chunk_number(self) -> int:
        with self._lock:
            return self._counter

    def start_session(self, session_id: str) -> None:
        """Reset numbering and forget all keys."""
        with self._lock:
            self._session_id = session_id
            self._counter = 0
            self._dispatched.clear()
            self._in_flight.clear()

    def restore(self, session_id: str, chunk_number: int) -> None:
        """Resume numbering after ``chunk_number`` for a recovered session.

        Chunks numbered up to ``chunk_number`` are treated as dispatched.
        """
        with self._lock:
            self._session_id = session_id
            self._counter = max(0, chunk_number)
            self._dispatched = {chunk_key(session_id, n) for n in range(1, self._counter + 1)}
            self._in_flight.clear()
        logger.info(f"Restored chunk sequence for {session_id} at {chunk_number}")

    def next_chunk(self, session_id: str) -> int:
        """Return the next chunk number for the session (first is 1).

        Raises:
            SessionError: If ``session_id`` is not the current session.
        """
        with self._lock:
            if session_id != self._session_id:
                raise SessionError("Chunk requested for a session that is not current", session_id)
            self._counter += 1
            return self._counter

    def is_duplicate(self, session_id: str, chunk_number: int) -> bool:
        key = chunk_key(session_id, chunk_number)
        with self._lock:
            return key in self._dispatched or key in self._in_flight

    def claim(self, chunk: Chunk) -> bool:
        """Reserve a chunk for dispatch. Returns False if it is a duplicate."""
        with self._lock:
            if chunk.key in self._dispatched or chunk.key in self._in_flight:
                return False
            self._in_flight.add(chunk.key)
            return True

    def release(self, chunk: Chunk) -> None:
        """Give up a claim after a failed dispatch."""
        with self._lock:
            self._in_flight.discard(chunk.key)

    def mark_dispatched(self, chunk: Chunk) -> None:
        with self._lock:
            self._in_flight.discard(chunk.key)
            self._dispatched.add(chunk.key)
