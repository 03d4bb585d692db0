"""Tests for the compaction engine and its stages."""

import pytest

from activity_pipeline.compaction import CompactionEngine
from activity_pipeline.compaction.coalescing import (
    coalesce_text_inputs,
    join_text_parts,
    looks_like_word_fragments,
)
from activity_pipeline.compaction.filters import (
    coalesce_network_bursts,
    filter_duplicate_snapshots,
    is_generic_snapshot,
    remove_useless_events,
)
from activity_pipeline.config import CompactionConfig
from activity_pipeline.events.models import RawEvent

from .fixtures import (
    TEST_APP_BROWSER,
    TEST_APP_EDITOR,
    TEST_PREVIEW_INBOX,
    TEST_PREVIEW_REPORT,
    TEST_URL_API,
    TEST_URL_REPORT,
    TEST_WINDOW_INBOX,
    TEST_WINDOW_REPORT,
    at,
    optimized,
    raw,
    snapshot,
)


@pytest.fixture
def engine() -> CompactionEngine:
    return CompactionEngine()


def _types(events) -> list[str]:
    return [event.type for event in events]


# =============================================================================
# Useless-event removal
# =============================================================================


class TestStructuralEvents:
    def test_always_kept(self, engine: CompactionEngine):
        events = [
            raw("session_start", 0),
            raw("window_change", 0.1, window_title=TEST_WINDOW_REPORT),
            raw("window_change", 0.2, window_title=TEST_WINDOW_REPORT),
            raw("page_view", 0.3, url=TEST_URL_REPORT),
            raw("session_end", 0.4),
        ]
        assert len(engine.compact(events)) == 5


class TestTextRule:
    def test_blank_text_dropped(self, engine: CompactionEngine):
        events = [raw("text_input", 0, text="   "), raw("text_selection", 1, text="")]
        assert engine.compact(events) == []

    def test_selection_kept(self, engine: CompactionEngine):
        result = engine.compact([raw("text_selection", 0, text="revenue")])
        assert result[0].fields == {"text": "revenue"}


class TestScrollRule:
    def test_ten_scrolls_in_a_minute_become_two(self, engine: CompactionEngine):
        events = [raw("scroll", i * 5) for i in range(10)]
        assert len(engine.compact(events)) == 2

    def test_window_rolls(self, engine: CompactionEngine):
        # kept at 0 and 10; 30 is over the cap; 60 evicts 0; 70 evicts 10
        events = [raw("scroll", s) for s in (0, 10, 30, 60, 70, 75)]
        result = engine.compact(events)
        assert [e.timestamp for e in result] == [at(0), at(10), at(60), at(70)]

    def test_out_of_order_entries_expire(self):
        # 0 arrives after 50; by 70 it has expired even though 50 has not
        events = [optimized("scroll", s) for s in (50, 0, 10, 70)]
        result = remove_useless_events(events, CompactionConfig())
        assert [e.timestamp for e in result] == [at(50), at(0), at(70)]


class TestSnapshotRule:
    def test_identical_snapshot_five_seconds_later_dropped(self, engine: CompactionEngine):
        events = [
            snapshot(0, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
            snapshot(5, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
        ]
        assert len(engine.compact(events)) == 1

    def test_different_snapshots_fifty_seconds_apart_kept(self, engine: CompactionEngine):
        events = [
            snapshot(0, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
            snapshot(50, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX),
        ]
        assert len(engine.compact(events)) == 2

    def test_snapshot_forty_seconds_later_dropped(self, engine: CompactionEngine):
        events = [
            snapshot(0, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
            snapshot(40, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX),
        ]
        assert len(engine.compact(events)) == 1

    def test_snapshot_without_content_dropped(self, engine: CompactionEngine):
        assert engine.compact([snapshot(0, "short")]) == []

    def test_title_only_snapshot_kept(self, engine: CompactionEngine):
        assert len(engine.compact([snapshot(0, "", TEST_WINDOW_REPORT)])) == 1

    def test_generic_window_dropped(self, engine: CompactionEngine):
        assert engine.compact([snapshot(0, TEST_PREVIEW_REPORT, "Desktop")]) == []

    def test_short_generic_preview_dropped(self, engine: CompactionEngine):
        assert engine.compact([snapshot(0, "Finder - Documents folder")]) == []

    def test_long_preview_mentioning_generic_title_kept(self):
        event = optimized(
            "content_snapshot",
            content_preview="Notes on how the Finder sidebar should group shared folders by team",
        )
        assert is_generic_snapshot(event) is False

    def test_snapshot_of_background_app_dropped(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            snapshot(2, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX),
        ]
        assert _types(engine.compact(events)) == ["app_change"]

    def test_snapshot_of_focused_app_kept(self, engine: CompactionEngine):
        events = [
            raw("window_change", 0, window_title=TEST_WINDOW_REPORT),
            snapshot(2, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
        ]
        assert len(engine.compact(events)) == 2

    def test_no_nearby_focus_change_kept(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            snapshot(30, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX),
        ]
        assert len(engine.compact(events)) == 2

    def test_active_app_check_can_be_disabled(self):
        engine = CompactionEngine(CompactionConfig(only_snapshot_active_app=False))
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            snapshot(2, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX),
        ]
        assert len(engine.compact(events)) == 2


class TestClickRule:
    def test_enhanced_clicks_dropped(self, engine: CompactionEngine):
        event = raw("enhanced_element_click", 0, element={"role": "button", "label": "Save"})
        assert engine.compact([event]) == []

    def test_click_without_role_or_label_dropped(self, engine: CompactionEngine):
        assert engine.compact([raw("click", 0, element_title="tooltip", x=1, y=2)]) == []

    def test_same_timestamp_and_label_dropped(self, engine: CompactionEngine):
        events = [
            raw("click", 0, element_label="Save"),
            raw("mouse_click", 0, element_label="Save"),
            raw("click", 0, element_label="Cancel"),
        ]
        assert len(engine.compact(events)) == 2

    def test_rapid_clicks_on_different_labels_kept(self, engine: CompactionEngine):
        events = [raw("click", i * 0.2, element_label=f"Cell {i}") for i in range(5)]
        assert len(engine.compact(events)) == 5


class TestAppChangeRule:
    def test_repeated_app_change_dropped(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            raw("app_change", 5, app_name=TEST_APP_EDITOR),
        ]
        assert len(engine.compact(events)) == 1

    def test_return_to_recent_app_dropped(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            raw("app_change", 5, app_name=TEST_APP_BROWSER),
            raw("app_change", 10, app_name=TEST_APP_EDITOR),
        ]
        result = engine.compact(events)
        assert [e.get("app_name") for e in result] == [TEST_APP_EDITOR, TEST_APP_BROWSER]

    def test_return_after_other_app_leaves_lookback_kept(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            raw("app_change", 5, app_name=TEST_APP_BROWSER),
            raw("click", 6, element_label="A"),
            raw("click", 7, element_label="B"),
            raw("app_change", 10, app_name=TEST_APP_EDITOR),
        ]
        assert len(engine.compact(events)) == 5

    def test_repeat_outside_lookback_kept(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            raw("click", 3, element_label="A"),
            raw("click", 4, element_label="B"),
            raw("click", 5, element_label="C"),
            raw("app_change", 6, app_name=TEST_APP_EDITOR),
        ]
        assert len(engine.compact(events)) == 5

    def test_app_change_within_duplicate_window_dropped(self, engine: CompactionEngine):
        events = [
            raw("app_change", 0, app_name=TEST_APP_EDITOR),
            raw("app_change", 1, app_name=TEST_APP_BROWSER),
        ]
        assert len(engine.compact(events)) == 1


class TestDuplicateWindowRule:
    def test_same_type_within_window_dropped(self, engine: CompactionEngine):
        events = [
            raw("file_save", 0, path="/a"),
            raw("file_save", 1.5, path="/b"),
            raw("file_save", 2.5, path="/c"),
        ]
        result = engine.compact(events)
        assert [e.get("payload") for e in result] == [{"path": "/a"}, {"path": "/c"}]

    def test_different_types_not_suppressed(self, engine: CompactionEngine):
        events = [raw("file_save", 0), raw("file_open", 0.5)]
        assert len(engine.compact(events)) == 2


def test_remove_useless_events_keeps_arrival_order():
    events = [
        optimized("window_change", 5, window_title=TEST_WINDOW_REPORT),
        optimized("text_input", 1, text="late arrival"),
    ]
    assert remove_useless_events(events, CompactionConfig()) == events


# =============================================================================
# Text coalescing
# =============================================================================


class TestWordFragments:
    @pytest.mark.parametrize(
        ("head", "tail", "expected"),
        [
            ("s", "ales", True),
            ("re", "port", True),
            ("repo", "rt", True),
            ("hello", "world", False),
            ("s", "ales2", False),
            ("abcd", "efg", False),
        ],
    )
    def test_looks_like_word_fragments(self, head: str, tail: str, expected: bool):
        assert looks_like_word_fragments(head, tail) is expected

    def test_join_two_fragments(self):
        assert join_text_parts(["s", "ales"]) == "sales"

    def test_join_words_with_space(self):
        assert join_text_parts(["hello", "world"]) == "hello world"

    def test_join_three_parts_always_spaced(self):
        assert join_text_parts(["s", "a", "les"]) == "s a les"


class TestTextCoalescing:
    def test_fragments_merge_into_word(self, engine: CompactionEngine):
        events = [raw("text_input", 0, text="s"), raw("text_input", 1, text="ales")]
        result = engine.compact(events)
        assert len(result) == 1
        assert result[0].type == "text_input"
        assert result[0].fields == {"text": "sales"}
        assert result[0].timestamp == at(0)

    def test_words_merge_with_space(self, engine: CompactionEngine):
        events = [raw("keystroke", 0, text="hello"), raw("keystroke", 3, text="world")]
        result = engine.compact(events)
        assert result[0].fields == {"text": "hello world"}
        assert result[0].type == "text_input"

    def test_gap_over_ten_seconds_never_merges(self, engine: CompactionEngine):
        events = [raw("text_input", 0, text="hello"), raw("text_input", 10.001, text="world")]
        assert [e.text() for e in engine.compact(events)] == ["hello", "world"]

    def test_gap_of_exactly_ten_seconds_merges(self, engine: CompactionEngine):
        events = [raw("text_input", 0, text="hello"), raw("text_input", 10, text="world")]
        assert [e.text() for e in engine.compact(events)] == ["hello world"]

    def test_chain_of_short_gaps_forms_one_group(self, engine: CompactionEngine):
        events = [raw("text_input", i * 8, text=f"w{i}") for i in range(4)]
        assert [e.text() for e in engine.compact(events)] == ["w0 w1 w2 w3"]

    def test_interleaved_events_do_not_split_groups(self, engine: CompactionEngine):
        events = [
            raw("text_input", 0, text="quarterly"),
            raw("window_change", 1, window_title=TEST_WINDOW_REPORT),
            raw("text_input", 2, text="revenue"),
        ]
        result = engine.compact(events)
        assert _types(result) == ["text_input", "window_change"]
        assert result[0].text() == "quarterly revenue"

    def test_selection_is_not_coalesced(self):
        events = [
            optimized("text_selection", 0, text="a"),
            optimized("text_selection", 1, text="b"),
        ]
        assert coalesce_text_inputs(events, 10_000) == events

    def test_merged_text_sorts_before_non_text_on_ties(self):
        events = [
            optimized("click", 0, element_label="Save"),
            optimized("text_input", 0, text="x"),
            optimized("text_input", 1, text="yz"),
        ]
        result = coalesce_text_inputs(events, 10_000)
        assert _types(result) == ["text_input", "click"]

    def test_disabled(self):
        engine = CompactionEngine(CompactionConfig(coalesce_text_inputs=False))
        events = [raw("text_input", 0, text="s"), raw("text_input", 1, text="ales")]
        assert len(engine.compact(events)) == 2


# =============================================================================
# Later stages
# =============================================================================


class TestDuplicateSnapshotFilter:
    def test_repeat_of_previous_kept_snapshot_dropped(self):
        first = optimized(
            "content_snapshot", 0, content_preview=TEST_PREVIEW_REPORT, window_title="A"
        )
        repeat = optimized(
            "content_snapshot", 60, content_preview=TEST_PREVIEW_REPORT, window_title="A"
        )
        other = optimized(
            "content_snapshot", 120, content_preview=TEST_PREVIEW_INBOX, window_title="A"
        )
        assert filter_duplicate_snapshots([first, repeat, other]) == [first, other]

    def test_engine_drops_repeated_snapshot_across_interval(self, engine: CompactionEngine):
        events = [
            snapshot(0, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
            snapshot(60, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT),
        ]
        assert len(engine.compact(events)) == 1


class TestNetworkBursts:
    def test_burst_keeps_first(self):
        events = [optimized("network", s, url=TEST_URL_API) for s in (0, 1.5, 3, 4.5)]
        assert coalesce_network_bursts(events, 2000) == events[:1]

    def test_gap_starts_new_burst(self):
        events = [optimized("network", s, url=TEST_URL_API) for s in (0, 1, 3.5, 4)]
        assert coalesce_network_bursts(events, 2000) == [events[0], events[2]]

    def test_non_network_event_ends_burst(self):
        events = [
            optimized("network", 0, url=TEST_URL_API),
            optimized("click", 0.5, element_label="Save"),
            optimized("network", 1, url=TEST_URL_API),
        ]
        assert coalesce_network_bursts(events, 2000) == events


# =============================================================================
# Engine
# =============================================================================


def _realistic_batch() -> list[RawEvent]:
    events: list[RawEvent] = [raw("session_start", 0)]
    events.append(raw("app_change", 1, app_name=TEST_APP_BROWSER))
    events.append(raw("window_change", 1.5, window_title=TEST_WINDOW_REPORT))
    events.append(snapshot(3, TEST_PREVIEW_REPORT, TEST_WINDOW_REPORT))
    events.extend(raw("scroll", 4 + i) for i in range(8))
    events.extend(raw("text_input", 15 + i * 0.5, text=ch) for i, ch in enumerate("report"))
    events.append(raw("text_input", 40, text="s"))
    events.append(raw("text_input", 41, text="ales"))
    events.extend(raw("network", 50 + i * 0.3, url=TEST_URL_API, method="GET") for i in range(6))
    events.append(raw("click", 55, element={"role": "button", "label": "Share"}))
    events.append(raw("enhanced_element_click", 55, element={"role": "button", "label": "Share"}))
    events.append(raw("app_change", 70, app_name=TEST_APP_EDITOR))
    events.append(snapshot(72, TEST_PREVIEW_INBOX, TEST_WINDOW_INBOX))
    events.append(raw("file_save", 90, path="/reports/q1.md"))
    return events


class TestCompactionEngine:
    def test_realistic_batch(self, engine: CompactionEngine):
        result, stats = engine.compact_with_stats(_realistic_batch())
        assert _types(result) == [
            "session_start",
            "app_change",
            "window_change",
            "content_snapshot",
            "scroll",
            "scroll",
            "text_input",
            "text_input",
            "network",
            "click",
            "app_change",
            "file_save",
        ]
        texts = [e.text() for e in result if e.type == "text_input"]
        assert texts == ["r e p o r t", "sales"]
        assert stats.raw_count == len(_realistic_batch())
        assert stats.optimized_count == len(result)
        assert stats.reduction_percent > 0

    def test_idempotent(self, engine: CompactionEngine):
        once = engine.compact(_realistic_batch())
        twice = engine.compact([event.to_raw() for event in once])
        assert twice == once

    def test_output_in_timestamp_order(self, engine: CompactionEngine):
        events = [
            raw("window_change", 10, window_title=TEST_WINDOW_REPORT),
            raw("page_view", 2, url=TEST_URL_REPORT),
        ]
        assert [e.timestamp for e in engine.compact(events)] == [at(2), at(10)]

    def test_empty_input(self, engine: CompactionEngine):
        result, stats = engine.compact_with_stats([])
        assert result == []
        assert stats.optimized_count == 0

    def test_malformed_event_skipped(self, engine: CompactionEngine):
        bad = RawEvent(timestamp=at(0), type="click", data="oops")  # type: ignore[arg-type]
        result, stats = engine.compact_with_stats([bad, raw("page_view", 1, url=TEST_URL_REPORT)])
        assert _types(result) == ["page_view"]
        assert stats.skipped_malformed == 1

    def test_all_stages_disabled_only_normalizes(self):
        config = CompactionConfig(
            remove_useless_events=False,
            coalesce_text_inputs=False,
            coalesce_duplicate_snapshots=False,
            coalesce_network_bursts=False,
        )
        events = [raw("scroll", i) for i in range(5)]
        assert len(CompactionEngine(config).compact(events)) == 5

    def test_stats_breakdown(self, engine: CompactionEngine):
        events = [raw("scroll", i * 5) for i in range(10)]
        _, stats = engine.compact_with_stats(events)
        assert stats.after_useless_removal == 2
        assert stats.type_breakdown == {"scroll": 2}
        assert stats.original_tokens == 10 * 40 + 50
        assert stats.optimized_tokens == 2 * 15 + 50
