"""Text input coalescing.

Keystroke capture produces text in fragments ("s", "ales"). Fragments that
arrive close together are merged into one text input so the analysis
service sees words instead of keystrokes.
"""

import logging
import re
from collections.abc import Sequence

from activity_pipeline.constants import (
    EVENT_TEXT_INPUT,
    FRAGMENT_LONG_HEAD_MAX,
    FRAGMENT_LONG_HEAD_TAIL_MAX,
    FRAGMENT_MAX_WORD_CHARS,
    FRAGMENT_SHORT_HEAD_MAX,
    FRAGMENT_SHORT_HEAD_TAIL_MAX,
)
from activity_pipeline.events.models import EventKind, OptimizedEvent, millis_between

logger = logging.getLogger(__name__)

_ALPHA_PATTERN = re.compile(r"[a-zA-Z]+")


def looks_like_word_fragments(head: str, tail: str) -> bool:
    """Check whether two text parts are pieces of one word.

    Examples:
        >>> looks_like_word_fragments("s", "ales")
        True
        >>> looks_like_word_fragments("hello", "world")
        False
    """
    combined = head + tail
    short_head = len(head) <= FRAGMENT_SHORT_HEAD_MAX and len(tail) <= FRAGMENT_SHORT_HEAD_TAIL_MAX
    short_tail = (
        len(head) <= FRAGMENT_LONG_HEAD_MAX
        and len(tail) <= FRAGMENT_LONG_HEAD_TAIL_MAX
        and len(combined) <= FRAGMENT_MAX_WORD_CHARS
    )
    return (short_head or short_tail) and _ALPHA_PATTERN.fullmatch(combined) is not None


def join_text_parts(parts: Sequence[str]) -> str:
    """Join text parts, gluing a two-part word split back together."""
    parts = [part for part in parts if part]
    if len(parts) == 2 and looks_like_word_fragments(parts[0], parts[1]):
        return (parts[0] + parts[1]).strip()
    return " ".join(parts).strip()


def merge_text_events(group: Sequence[OptimizedEvent]) -> OptimizedEvent:
    """Merge a group of text inputs into one at the first member's timestamp."""
    parts = [str(event.get("text")) for event in group if event.get("text")]
    return OptimizedEvent(
        timestamp=group[0].timestamp,
        type=EVENT_TEXT_INPUT,
        fields={"text": join_text_parts(parts)},
    )


def _is_text_input(event: OptimizedEvent) -> bool:
    return event.kind is EventKind.TEXT_INPUT and bool(event.get("text"))


def coalesce_text_inputs(events: Sequence[OptimizedEvent], gap_ms: int) -> list[OptimizedEvent]:
    """Merge text inputs that arrive within ``gap_ms`` of each other.

    Text inputs are grouped in arrival order, ignoring interleaved non-text
    events. An input joins the current group when it is at most ``gap_ms``
    after the group's last member.

    Args:
        events: Events in arrival order.
        gap_ms: Maximum gap between consecutive group members.

    Returns:
        All events sorted by timestamp; merged text sorts before non-text
        events sharing its timestamp.
    """
    text_events: list[OptimizedEvent] = []
    other_events: list[OptimizedEvent] = []
    for event in events:
        if _is_text_input(event):
            text_events.append(event)
        else:
            other_events.append(event)

    groups: list[list[OptimizedEvent]] = []
    for event in text_events:
        if groups and millis_between(groups[-1][-1].timestamp, event.timestamp) <= gap_ms:
            groups[-1].append(event)
        else:
            groups.append([event])

    merged = [merge_text_events(group) if len(group) > 1 else group[0] for group in groups]
    if len(merged) < len(text_events):
        logger.debug(f"Coalesced {len(text_events)} text inputs into {len(merged)}")

    # sorted() is stable, so merged text stays ahead of non-text on ties
    return sorted([*merged, *other_events], key=lambda e: e.timestamp)
