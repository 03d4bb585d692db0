"""Data models for the result store."""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class StoredResult:
    """One analysis result as kept in durable storage."""

    session_id: str
    chunk_number: int
    payload: dict[str, Any] = field(default_factory=dict)
    event_count: int = 0
    raw_event_count: int = 0
    user_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: int | None = None

    @property
    def key(self) -> str:
        return f"{self.session_id}_{self.chunk_number}"

    def to_row(self) -> dict[str, Any]:
        """Convert to database row."""
        return {
            "session_id": self.session_id,
            "chunk_number": self.chunk_number,
            "chunk_key": self.key,
            "user_id": self.user_id,
            "payload": json.dumps(self.payload, default=str),
            "event_count": self.event_count,
            "raw_event_count": self.raw_event_count,
            "created_at": self.created_at.isoformat(),
            "created_at_epoch": int(self.created_at.timestamp()),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StoredResult":
        """Create from database row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            chunk_number=row["chunk_number"],
            user_id=row["user_id"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            event_count=row["event_count"],
            raw_event_count=row["raw_event_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
