"""Tests for raw event intake."""

import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from activity_pipeline.events.models import RawEvent
from activity_pipeline.exceptions import IngestionError
from activity_pipeline.pipeline.ingestor import EventIngestor

from .conftest import ManualClock
from .fixtures import TEST_APP_EDITOR, raw


class Switch:
    def __init__(self, on: bool = True):
        self.on = on

    def __call__(self) -> bool:
        return self.on


@pytest.fixture
def active() -> Switch:
    return Switch()


@pytest.fixture
def on_cap() -> MagicMock:
    return MagicMock()


@pytest.fixture
def ingestor(clock: ManualClock, active: Switch, on_cap: MagicMock) -> EventIngestor:
    return EventIngestor(
        lock=threading.RLock(),
        clock=clock,
        is_active=active,
        on_cap_exceeded=on_cap,
        emergency_raw_cap=2,
    )


class TestAppend:
    def test_wire_event_without_timestamp_uses_clock(
        self, ingestor: EventIngestor, clock: ManualClock
    ):
        assert ingestor.append({"type": "text_input", "data": {"text": "hi"}, "source": "kb"})

        event = ingestor.snapshot()[0]
        assert event.timestamp == clock.now
        assert event.data == {"text": "hi"}
        assert event.extra == {"source": "kb"}

    def test_naive_timestamp_treated_as_utc(self, ingestor: EventIngestor):
        ingestor.append(RawEvent(timestamp=datetime(2026, 3, 2, 8, 30), type="click"))
        assert ingestor.snapshot()[0].timestamp == datetime(2026, 3, 2, 8, 30, tzinfo=UTC)

    def test_dropped_when_inactive(self, ingestor: EventIngestor, active: Switch):
        active.on = False
        assert ingestor.append(raw("click", 0)) is False
        assert ingestor.size == 0
        assert ingestor.metrics.total_raw_events == 0

    @pytest.mark.parametrize(
        "event",
        [
            {"data": {"text": "no type"}},
            {"type": ""},
            {"type": "click", "data": "not a mapping"},
            "not an event",
        ],
    )
    def test_malformed_dropped(self, ingestor: EventIngestor, event):
        assert ingestor.append(event) is False
        assert ingestor.size == 0

    def test_parse_raises_for_empty_type(self, ingestor: EventIngestor):
        with pytest.raises(IngestionError):
            ingestor.parse(raw(""))

    def test_metrics_recorded(self, ingestor: EventIngestor):
        ingestor.append(raw("keystroke", 0, app=TEST_APP_EDITOR, text="a"))
        assert ingestor.metrics.keystroke_count == 1
        assert ingestor.metrics.app_event_counts[TEST_APP_EDITOR] == 1


class TestBuffer:
    def test_cap_callback_fires_past_cap(self, ingestor: EventIngestor, on_cap: MagicMock):
        ingestor.append(raw("click", 0))
        ingestor.append(raw("click", 1))
        on_cap.assert_not_called()

        ingestor.append(raw("click", 2))
        on_cap.assert_called_once_with()

    def test_swap_hands_over_buffer(self, ingestor: EventIngestor):
        ingestor.append(raw("click", 0))
        taken = ingestor.swap()
        ingestor.append(raw("click", 1))

        assert [e.timestamp for e in taken] == [raw("click", 0).timestamp]
        assert ingestor.size == 1
        assert ingestor.swap()[0].timestamp == raw("click", 1).timestamp
        assert ingestor.swap() == []

    def test_reset_restores_events(self, ingestor: EventIngestor):
        ingestor.append(raw("click", 0))
        ingestor.reset(events=[raw("scroll", 5), raw("scroll", 6)])

        assert ingestor.size == 2
        assert ingestor.metrics.total_raw_events == 0
