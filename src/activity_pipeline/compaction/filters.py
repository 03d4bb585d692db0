"""Event filters used by the compaction engine.

The useless-event filter walks the batch once, in arrival order, and
decides for each event whether it carries signal. Rules are evaluated in a
fixed order and the first rule that claims an event decides its fate.
"""

import logging
from collections.abc import Sequence

from activity_pipeline.compaction.models import CompactionState
from activity_pipeline.config import CompactionConfig
from activity_pipeline.constants import (
    GENERIC_PREVIEW_MAX_CHARS,
    GENERIC_SNAPSHOT_CONTENT,
    GENERIC_SNAPSHOT_WINDOWS,
    SNAPSHOT_MIN_PREVIEW_CHARS,
)
from activity_pipeline.events.models import (
    FOCUS_KINDS,
    STRUCTURAL_KINDS,
    EventKind,
    OptimizedEvent,
    millis_between,
)

logger = logging.getLogger(__name__)


def _clean(value: object) -> str:
    return str(value).strip() if value is not None else ""


# =============================================================================
# Snapshot helpers
# =============================================================================


def snapshot_has_content(event: OptimizedEvent) -> bool:
    """A snapshot needs a real preview, a window title or a URL."""
    return (
        len(_clean(event.get("content_preview"))) > SNAPSHOT_MIN_PREVIEW_CHARS
        or bool(_clean(event.get("window_title")))
        or bool(_clean(event.get("url")))
    )


def is_generic_snapshot(event: OptimizedEvent) -> bool:
    """Check whether a snapshot only shows desktop chrome.

    A snapshot is generic when its window title is one of the known chrome
    titles, or when its preview is short and mentions one of them.
    """
    window_title = event.get("window_title")
    if window_title in GENERIC_SNAPSHOT_WINDOWS:
        return True

    preview = event.get("content_preview")
    if not preview:
        return False
    preview = str(preview)
    return len(preview) < GENERIC_PREVIEW_MAX_CHARS and any(
        generic in preview for generic in GENERIC_SNAPSHOT_CONTENT
    )


def is_snapshot_from_active_app(
    snapshot: OptimizedEvent,
    kept: Sequence[OptimizedEvent],
    window_ms: int,
) -> bool:
    """Check a snapshot against the most recent nearby focus change.

    Args:
        snapshot: Candidate content snapshot.
        kept: Events kept so far in this pass.
        window_ms: How far (either direction) a focus change may be.

    Returns:
        True when there is no nearby focus change, when the snapshot carries
        no app identity, or when its app matches the focused one.
    """
    nearby = [
        event
        for event in kept
        if event.kind in FOCUS_KINDS
        and abs(millis_between(event.timestamp, snapshot.timestamp)) <= window_ms
    ]
    if not nearby:
        return True

    latest = max(nearby, key=lambda e: e.timestamp)
    active_app = _clean(latest.get("app_name")) or _clean(latest.get("window_title"))
    snapshot_app = _clean(snapshot.get("window_title")) or _clean(snapshot.get("app_name"))
    if not active_app or not snapshot_app:
        return True
    return active_app in snapshot_app or snapshot_app in active_app


# =============================================================================
# Useless-event removal
# =============================================================================


def _keep_scroll(event: OptimizedEvent, state: CompactionState, config: CompactionConfig) -> bool:
    # Arrival order is not timestamp order, so every entry is checked.
    state.scroll_window = [
        seen
        for seen in state.scroll_window
        if millis_between(seen, event.timestamp) < config.scroll_window_ms
    ]
    if len(state.scroll_window) < config.scroll_cap_per_minute:
        state.scroll_window.append(event.timestamp)
        return True
    return False


def _keep_snapshot(
    event: OptimizedEvent, state: CompactionState, config: CompactionConfig
) -> bool:
    if not snapshot_has_content(event):
        return False
    if (
        state.last_snapshot_at is not None
        and millis_between(state.last_snapshot_at, event.timestamp)
        < config.snapshot_min_interval_ms
    ):
        return False
    if is_generic_snapshot(event):
        return False
    if config.only_snapshot_active_app and not is_snapshot_from_active_app(
        event, state.kept, config.active_app_window_ms
    ):
        return False
    state.last_snapshot_at = event.timestamp
    return True


def _keep_click(event: OptimizedEvent, state: CompactionState) -> bool:
    label = event.get("element_label")
    if not _clean(label) and not _clean(event.get("element_role")):
        return False
    for other in state.kept:
        if (
            other.kind is EventKind.CLICK
            and other.timestamp == event.timestamp
            and other.get("element_label") == label
        ):
            return False
    return True


def _is_repeated_app_change(
    event: OptimizedEvent, state: CompactionState, config: CompactionConfig
) -> bool:
    if config.app_change_lookback == 0:
        return False
    recent = [e for e in state.kept[-config.app_change_lookback :] if e.type == event.type]
    for name in ("app_name", "window_title"):
        value = _clean(event.get(name))
        if value and any(value == _clean(previous.get(name)) for previous in recent):
            return True
    return False


def _is_recent_duplicate(
    event: OptimizedEvent, state: CompactionState, config: CompactionConfig
) -> bool:
    last = state.last_kept_by_type.get(event.type)
    return (
        last is not None
        and millis_between(last, event.timestamp) < config.duplicate_suppress_window_ms
    )


def should_keep(event: OptimizedEvent, state: CompactionState, config: CompactionConfig) -> bool:
    """Decide whether one event survives useless-event removal.

    Mutates ``state`` for kept scroll and snapshot events; the caller is
    responsible for appending kept events to ``state.kept``.
    """
    kind = event.kind

    if kind in STRUCTURAL_KINDS:
        return True

    if kind in (EventKind.TEXT_INPUT, EventKind.TEXT_SELECTION):
        return bool(event.text())

    if kind is EventKind.SCROLL:
        return _keep_scroll(event, state, config)

    if kind is EventKind.CONTENT_SNAPSHOT:
        return _keep_snapshot(event, state, config)

    if kind is EventKind.ENHANCED_CLICK:
        return False

    if kind is EventKind.CLICK:
        return _keep_click(event, state)

    if kind is EventKind.APPLICATION_CHANGE and _is_repeated_app_change(event, state, config):
        return False

    if _is_recent_duplicate(event, state, config):
        return False
    state.last_kept_by_type[event.type] = event.timestamp
    return True


def remove_useless_events(
    events: Sequence[OptimizedEvent], config: CompactionConfig
) -> list[OptimizedEvent]:
    """Drop events that carry no analytical signal.

    Args:
        events: Normalized events in arrival order.
        config: Compaction thresholds.

    Returns:
        Kept events in arrival order.
    """
    state = CompactionState()
    for event in events:
        if should_keep(event, state, config):
            state.keep(event)
    dropped = len(events) - len(state.kept)
    if dropped:
        logger.debug(f"Removed {dropped} useless events ({len(events)} -> {len(state.kept)})")
    return state.kept


# =============================================================================
# Later stages
# =============================================================================


def filter_duplicate_snapshots(events: Sequence[OptimizedEvent]) -> list[OptimizedEvent]:
    """Drop a snapshot whose preview and window title repeat the previous kept one."""
    result: list[OptimizedEvent] = []
    previous: OptimizedEvent | None = None
    for event in events:
        if event.kind is EventKind.CONTENT_SNAPSHOT:
            if (
                previous is not None
                and event.get("content_preview") == previous.get("content_preview")
                and event.get("window_title") == previous.get("window_title")
            ):
                continue
            previous = event
        result.append(event)
    return result


def coalesce_network_bursts(
    events: Sequence[OptimizedEvent], window_ms: int
) -> list[OptimizedEvent]:
    """Keep only the first event of each network burst.

    A burst is a run of consecutive network events whose successive gaps
    are within ``window_ms``. Any non-network event ends the burst.
    """
    result: list[OptimizedEvent] = []
    last_in_burst: OptimizedEvent | None = None
    for event in events:
        if event.kind is not EventKind.NETWORK:
            last_in_burst = None
            result.append(event)
            continue
        if (
            last_in_burst is not None
            and millis_between(last_in_burst.timestamp, event.timestamp) <= window_ms
        ):
            last_in_burst = event
            continue
        last_in_burst = event
        result.append(event)
    return result
