"""Shared constants and event builders for activity-pipeline tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

from activity_pipeline.events.models import OptimizedEvent, RawEvent

# Sessions and users
TEST_SESSION_ID = "session-a"
TEST_SESSION_ID_TWO = "session-b"
TEST_USER_ID = "user-42"
TEST_DAILY_GOAL = "Finish the quarterly sales report"

# Timestamps
TEST_NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)
TEST_EVENT_BASE = datetime(2026, 3, 2, 8, 30, 0, tzinfo=UTC)

# Apps and windows
TEST_APP_EDITOR = "Visual Studio Code"
TEST_APP_BROWSER = "Google Chrome"
TEST_WINDOW_REPORT = "Q1 Sales Report - Google Docs"
TEST_WINDOW_INBOX = "Inbox - Mail"
TEST_URL_REPORT = "https://docs.example.com/d/sales-report"
TEST_URL_API = "https://api.example.com/v1/metrics"
TEST_ANALYZER_ENDPOINT = "https://analysis.example.com/v1/analyze"

# Snapshot previews
TEST_PREVIEW_REPORT = "Quarterly revenue grew 12% driven by enterprise renewals."
TEST_PREVIEW_INBOX = "Re: Budget review meeting moved to Thursday afternoon"


def at(seconds: float) -> datetime:
    """Timestamp ``seconds`` after the test event base."""
    return TEST_EVENT_BASE + timedelta(seconds=seconds)


def raw(event_type: str, seconds: float = 0, app: str | None = None, **data: Any) -> RawEvent:
    """Build a raw event at ``seconds`` after the base with ``data`` as payload."""
    return RawEvent(timestamp=at(seconds), type=event_type, app=app, data=data)


def wire(event_type: str, seconds: float = 0, **data: Any) -> dict[str, Any]:
    """Build a raw event in the capture-source wire format."""
    event: dict[str, Any] = {"timestamp": at(seconds).isoformat(), "type": event_type}
    if data:
        event["data"] = data
    return event


def optimized(event_type: str, seconds: float = 0, **fields: Any) -> OptimizedEvent:
    return OptimizedEvent(timestamp=at(seconds), type=event_type, fields=fields)


def snapshot(seconds: float, preview: str, window_title: str | None = None) -> RawEvent:
    """Build a content snapshot in the nested capture-source layout."""
    payload: dict[str, Any] = {"textContent": preview}
    if window_title is not None:
        payload["activeApp"] = {"name": window_title, "windowTitle": window_title}
    return raw("content_snapshot", seconds, snapshot=payload)
