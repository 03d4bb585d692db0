"""Raw to optimized event normalization.

Capture sources disagree on where they put things: a click label may be a
top-level ``element_label``, ``data.element.label`` or
``fullPayload.element.label``. Each whitelisted field therefore has an
ordered list of dotted paths, tried against the raw event's top-level keys
first and its ``data`` mapping second. The first non-empty value wins.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from activity_pipeline.events.models import EventKind, OptimizedEvent, RawEvent
from activity_pipeline.exceptions import CompactionError

logger = logging.getLogger(__name__)

APP_NAME_PATHS = (
    "app_name",
    "appName",
    "object_id",
    "activeApp.name",
    "fullPayload.activeApp.name",
    "metadata.app_name",
)
WINDOW_TITLE_PATHS = (
    "window_title",
    "windowTitle",
    "activeApp.windowTitle",
    "fullPayload.activeApp.windowTitle",
    "fullPayload.windowTitle",
    "metadata.window_title",
)
TEXT_PATHS = (
    "text",
    "content",
    "fullPayload.content",
    "fullPayload.text",
    "metadata.text",
    "metadata.content",
)
ELEMENT_ROLE_PATHS = (
    "element_role",
    "element.role",
    "fullPayload.element.role",
    "metadata.element_role",
)
ELEMENT_LABEL_PATHS = (
    "element_label",
    "element.label",
    "fullPayload.element.label",
    "metadata.element_label",
)
ELEMENT_TITLE_PATHS = (
    "element_title",
    "element.title",
    "fullPayload.element.title",
    "metadata.element_title",
)
URL_PATHS = ("url", "fullPayload.url", "metadata.url")
METHOD_PATHS = ("method", "fullPayload.method", "metadata.method")
STATUS_PATHS = (
    "status",
    "status_code",
    "statusCode",
    "fullPayload.status",
    "fullPayload.statusCode",
    "metadata.status_code",
)
RESOURCE_TYPE_PATHS = (
    "resource_type",
    "resourceType",
    "fullPayload.resourceType",
    "metadata.resource_type",
)
SNAPSHOT_TYPE_PATHS = ("snapshot_type", "snapshot.type", "fullPayload.snapshot.type")
CONTENT_PREVIEW_PATHS = (
    "content_preview",
    "snapshot.textContent",
    "fullPayload.snapshot.textContent",
    "metadata.content_preview",
)
SNAPSHOT_WINDOW_PATHS = (
    "window_title",
    "snapshot.activeApp.windowTitle",
    "fullPayload.snapshot.activeApp.windowTitle",
    "metadata.window_title",
)
SNAPSHOT_URL_PATHS = ("url", "snapshot.url", "fullPayload.snapshot.url")
SNAPSHOT_APP_PATHS = (
    "app_name",
    "snapshot.activeApp.name",
    "fullPayload.snapshot.activeApp.name",
    "metadata.app_name",
)
PAGE_TITLE_PATHS = ("title", "page_title", "fullPayload.title", "metadata.title")


def _dig(source: Mapping[str, Any], path: str) -> Any:
    current: Any = source
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def extract_field(event: RawEvent, paths: Sequence[str]) -> Any:
    """Return the first non-empty value found along ``paths``.

    Args:
        event: Raw event to search.
        paths: Dotted paths in priority order.

    Returns:
        The value, or None when every path is missing or empty.
    """
    for path in paths:
        for source in (event.extra, event.data):
            value = _dig(source, path)
            if value is not None and value != "":
                return value
    return None


def _app_name(event: RawEvent, paths: Sequence[str] = APP_NAME_PATHS) -> Any:
    value = extract_field(event, paths)
    if value is None and event.app:
        return event.app
    return value


def _collect(event: RawEvent, lookups: Mapping[str, Sequence[str]]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, paths in lookups.items():
        value = extract_field(event, paths)
        if value is not None:
            fields[name] = value
    return fields


def normalize_event(event: RawEvent) -> OptimizedEvent | None:
    """Project a raw event onto the field whitelist of its kind.

    Args:
        event: Raw event from the buffer.

    Returns:
        The optimized event, or None when the event has no usable type.

    Raises:
        CompactionError: If the event is structurally malformed.
    """
    if not event.type:
        return None
    if not isinstance(event.timestamp, datetime):
        raise CompactionError("Event timestamp is not a datetime", event_type=event.type)
    if not isinstance(event.data, Mapping) or not isinstance(event.extra, Mapping):
        raise CompactionError("Event data is not a mapping", event_type=event.type)

    kind = event.kind
    fields: dict[str, Any]

    if kind in (EventKind.SESSION_START, EventKind.SESSION_END, EventKind.SCROLL):
        fields = {}

    elif kind in (EventKind.APP_FOCUS, EventKind.APPLICATION_CHANGE):
        fields = {}
        app_name = _app_name(event)
        if app_name is not None:
            fields["app_name"] = app_name

    elif kind is EventKind.WINDOW_CHANGE:
        fields = _collect(event, {"window_title": WINDOW_TITLE_PATHS})
        app_name = _app_name(event)
        if app_name is not None:
            fields["app_name"] = app_name

    elif kind in (EventKind.TEXT_INPUT, EventKind.TEXT_SELECTION):
        fields = _collect(event, {"text": TEXT_PATHS})

    elif kind in (EventKind.CLICK, EventKind.ENHANCED_CLICK):
        fields = _collect(
            event,
            {
                "element_role": ELEMENT_ROLE_PATHS,
                "element_label": ELEMENT_LABEL_PATHS,
                "element_title": ELEMENT_TITLE_PATHS,
            },
        )

    elif kind is EventKind.NETWORK:
        fields = _collect(
            event,
            {
                "url": URL_PATHS,
                "method": METHOD_PATHS,
                "status": STATUS_PATHS,
                "resource_type": RESOURCE_TYPE_PATHS,
            },
        )

    elif kind is EventKind.CONTENT_SNAPSHOT:
        fields = _collect(
            event,
            {
                "snapshot_type": SNAPSHOT_TYPE_PATHS,
                "content_preview": CONTENT_PREVIEW_PATHS,
                "window_title": SNAPSHOT_WINDOW_PATHS,
                "url": SNAPSHOT_URL_PATHS,
            },
        )
        app_name = _app_name(event, SNAPSHOT_APP_PATHS)
        if app_name is not None:
            fields["app_name"] = app_name

    elif kind is EventKind.PAGE_VIEW:
        fields = _collect(event, {"url": URL_PATHS, "title": PAGE_TITLE_PATHS})

    else:
        fields = {"payload": dict(event.data)}
        app_name = _app_name(event)
        if app_name is not None:
            fields["app_name"] = app_name

    return OptimizedEvent(timestamp=event.timestamp, type=event.type, fields=fields)


def normalize_events(events: Sequence[RawEvent]) -> list[OptimizedEvent]:
    """Normalize a batch, skipping (and logging) events that fail.

    Args:
        events: Raw events in arrival order.

    Returns:
        Optimized events in the same order.
    """
    optimized: list[OptimizedEvent] = []
    for event in events:
        try:
            result = normalize_event(event)
        except CompactionError as e:
            logger.warning(f"Skipping malformed event: {e}")
            continue
        if result is not None:
            optimized.append(result)
    return optimized
