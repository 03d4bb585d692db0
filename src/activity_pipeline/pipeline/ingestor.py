"""Raw event intake.

The ingestor is called from the capture source's thread at high rate. It
validates, timestamps and buffers events, and never raises back into the
capture source: anything malformed is dropped with a log line.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PayloadValidationError

from activity_pipeline.events.models import RawEvent, RawEventPayload, ensure_aware
from activity_pipeline.exceptions import IngestionError
from activity_pipeline.pipeline.metrics import SessionMetrics

logger = logging.getLogger(__name__)


class EventIngestor:
    """Owns the raw buffer of the current session."""

    def __init__(
        self,
        lock: threading.RLock,
        clock: Callable[[], datetime],
        is_active: Callable[[], bool],
        on_cap_exceeded: Callable[[], object],
        emergency_raw_cap: int,
    ):
        """Initialize the ingestor.

        Args:
            lock: The owning pipeline's lock.
            clock: Source of "now" for events without a timestamp.
            is_active: Whether a session is currently accepting events.
            on_cap_exceeded: Called (under the lock) when the buffer
                grows past ``emergency_raw_cap``.
            emergency_raw_cap: Raw buffer size that forces a flush.
        """
        self._lock = lock
        self._clock = clock
        self._is_active = is_active
        self._on_cap_exceeded = on_cap_exceeded
        self.emergency_raw_cap = emergency_raw_cap
        self._buffer: list[RawEvent] = []
        self.metrics = SessionMetrics()
        self._rejected_inactive = 0

    def parse(self, event: RawEvent | Mapping[str, Any]) -> RawEvent:
        """Turn a wire mapping into a raw event.

        Raises:
            IngestionError: If the event is malformed.
        """
        if isinstance(event, RawEvent):
            if not event.type:
                raise IngestionError("Event has no type")
            return event
        if not isinstance(event, Mapping):
            raise IngestionError(f"Unsupported event object: {type(event).__name__}")
        try:
            payload = RawEventPayload.model_validate(dict(event))
        except PayloadValidationError as e:
            event_type = event.get("type")
            raise IngestionError(
                f"Malformed raw event: {e.error_count()} validation errors",
                event_type=str(event_type) if event_type is not None else None,
            ) from e
        return RawEvent.from_payload(payload, self._clock())

    def append(self, event: RawEvent | Mapping[str, Any]) -> bool:
        """Buffer one raw event.

        Returns:
            True if the event was buffered; False if it was dropped because
            no session is active or it was malformed.
        """
        try:
            raw = self.parse(event)
        except IngestionError as e:
            logger.warning(f"Dropping raw event: {e}")
            return False

        with self._lock:
            if not self._is_active():
                self._rejected_inactive += 1
                if self._rejected_inactive == 1 or self._rejected_inactive % 1000 == 0:
                    logger.debug(
                        f"No active session, dropped {self._rejected_inactive} raw events"
                    )
                return False

            if raw.timestamp.tzinfo is None:
                raw = RawEvent(
                    timestamp=ensure_aware(raw.timestamp),
                    type=raw.type,
                    app=raw.app,
                    data=raw.data,
                    extra=raw.extra,
                )
            self._buffer.append(raw)
            self.metrics.record(raw)

            if len(self._buffer) > self.emergency_raw_cap:
                self._on_cap_exceeded()
        return True

    def swap(self) -> list[RawEvent]:
        """Take the buffered events, leaving a fresh empty buffer behind."""
        with self._lock:
            taken = self._buffer
            self._buffer = []
            return taken

    def reset(
        self,
        metrics: SessionMetrics | None = None,
        events: list[RawEvent] | None = None,
    ) -> None:
        """Replace the buffer and metrics (session start, reset, recovery)."""
        with self._lock:
            self._buffer = list(events or [])
            self.metrics = metrics or SessionMetrics()
            self._rejected_inactive = 0

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def snapshot(self) -> list[RawEvent]:
        """Copy of the current buffer."""
        with self._lock:
            return list(self._buffer)
