"""Constants for the activity pipeline.

This module centralizes the magic strings and numbers used throughout the
pipeline so that every threshold has a single source of truth.

Constants are organized by domain:
- Event type tags and aliases
- Compaction defaults
- Scheduling and triggers
- Persistence
- Metrics
- Logging
"""

from typing import Final

# =============================================================================
# Event Type Tags
# =============================================================================

EVENT_SESSION_START: Final[str] = "session_start"
EVENT_SESSION_END: Final[str] = "session_end"
EVENT_APP_FOCUS: Final[str] = "app_focus"
EVENT_APPLICATION_CHANGE: Final[str] = "application_change"
EVENT_WINDOW_CHANGE: Final[str] = "window_change"
EVENT_PAGE_VIEW: Final[str] = "page_view"
EVENT_TEXT_INPUT: Final[str] = "text_input"
EVENT_TEXT_SELECTION: Final[str] = "text_selection"
EVENT_SCROLL: Final[str] = "scroll_event"
EVENT_CONTENT_SNAPSHOT: Final[str] = "content_snapshot"
EVENT_CLICK: Final[str] = "click"
EVENT_ENHANCED_CLICK: Final[str] = "enhanced_element_click"
EVENT_NETWORK: Final[str] = "network"
EVENT_UNKNOWN: Final[str] = "unknown"

# Capture-source tags that resolve to a canonical tag above.
# Tags that are already canonical are not repeated here.
EVENT_TYPE_ALIASES: Final[dict[str, str]] = {
    "app_change": EVENT_APPLICATION_CHANGE,
    "app_focus_change": EVENT_APPLICATION_CHANGE,
    "window_focus": EVENT_WINDOW_CHANGE,
    "navigation": EVENT_PAGE_VIEW,
    "browser_navigation": EVENT_PAGE_VIEW,
    "url_change": EVENT_PAGE_VIEW,
    "keystroke": EVENT_TEXT_INPUT,
    "keydown": EVENT_TEXT_INPUT,
    "keyup": EVENT_TEXT_INPUT,
    "key_press": EVENT_TEXT_INPUT,
    "clipboard_copy": EVENT_TEXT_INPUT,
    "clipboard_paste": EVENT_TEXT_INPUT,
    "scroll": EVENT_SCROLL,
    "screenshot": EVENT_CONTENT_SNAPSHOT,
    "snapshot": EVENT_CONTENT_SNAPSHOT,
    "element_click": EVENT_CLICK,
    "mouse_click": EVENT_CLICK,
    "button_click": EVENT_CLICK,
    "mousedown": EVENT_CLICK,
    "network_request": EVENT_NETWORK,
    "http_request": EVENT_NETWORK,
}

# Snapshot windows and previews with no analytical signal
GENERIC_SNAPSHOT_CONTENT: Final[tuple[str, ...]] = (
    "LevelAI Desktop",
    "Desktop",
    "Finder",
    "Dock",
    "Menu Bar",
    "System Preferences",
    "Activity Monitor",
)
GENERIC_SNAPSHOT_WINDOWS: Final[tuple[str, ...]] = (
    "LevelAI Desktop",
    "Desktop",
    "Dock",
    "Menu Bar",
)
# A preview containing a generic title only counts as generic below this length
GENERIC_PREVIEW_MAX_CHARS: Final[int] = 50
SNAPSHOT_MIN_PREVIEW_CHARS: Final[int] = 10

# =============================================================================
# Compaction Defaults
# =============================================================================

DEFAULT_TEXT_COALESCE_GAP_MS: Final[int] = 10_000
DEFAULT_SNAPSHOT_MIN_INTERVAL_MS: Final[int] = 45_000
DEFAULT_SCROLL_CAP_PER_MINUTE: Final[int] = 2
DEFAULT_SCROLL_WINDOW_MS: Final[int] = 60_000
DEFAULT_NETWORK_BURST_WINDOW_MS: Final[int] = 2_000
DEFAULT_DUPLICATE_SUPPRESS_WINDOW_MS: Final[int] = 2_000
DEFAULT_ACTIVE_APP_WINDOW_MS: Final[int] = 5_000
DEFAULT_APP_CHANGE_LOOKBACK: Final[int] = 3

# Word-fragment repair: "s" + "ales" -> "sales"
FRAGMENT_SHORT_HEAD_MAX: Final[int] = 2
FRAGMENT_SHORT_HEAD_TAIL_MAX: Final[int] = 6
FRAGMENT_LONG_HEAD_MAX: Final[int] = 4
FRAGMENT_LONG_HEAD_TAIL_MAX: Final[int] = 2
FRAGMENT_MAX_WORD_CHARS: Final[int] = 8

# Token estimates used for compaction reporting
TOKENS_PER_RAW_EVENT: Final[int] = 40
TOKENS_PER_OPTIMIZED_EVENT: Final[int] = 15
TOKEN_OVERHEAD: Final[int] = 50

# =============================================================================
# Scheduling
# =============================================================================

DEFAULT_INTERVAL_MINUTES: Final[float] = 10
MAX_INTERVAL_MINUTES: Final[float] = 24 * 60
DEFAULT_EMERGENCY_RAW_CAP: Final[int] = 10_000
MIN_EMERGENCY_RAW_CAP: Final[int] = 1

TRIGGER_PERIODIC: Final[str] = "periodic_interval"
TRIGGER_MANUAL: Final[str] = "manual_trigger"
TRIGGER_EMERGENCY: Final[str] = "emergency_cap"
TRIGGER_FINAL_STOP: Final[str] = "final_stop"
TRIGGER_RECOVERY: Final[str] = "recovery"

# Analysis results kept in memory per pipeline
MAX_IN_MEMORY_RESULTS: Final[int] = 20

# =============================================================================
# Dispatch
# =============================================================================

DISPATCH_STATUS_SUCCESS: Final[str] = "success"
DISPATCH_STATUS_FAILED: Final[str] = "failed"
DISPATCH_STATUS_DUPLICATE: Final[str] = "duplicate"

# =============================================================================
# Persistence
# =============================================================================

DEFAULT_PERSISTENCE_NAMESPACE: Final[str] = "activity"
PERSISTENCE_KEY_INFIX: Final[str] = "tracker_data"
PERSISTENCE_FILE_SUFFIX: Final[str] = ".json"
DEFAULT_AUTOSAVE_INTERVAL_SECONDS: Final[int] = 30
MIN_AUTOSAVE_INTERVAL_SECONDS: Final[int] = 1
DEFAULT_RAW_TAIL_SIZE: Final[int] = 100
DEFAULT_STALE_AFTER_HOURS: Final[float] = 24
DEFAULT_DATA_DIR: Final[str] = ".activity_pipeline"
RESULTS_DB_FILENAME: Final[str] = "results.db"

# =============================================================================
# Metrics
# =============================================================================

ACTIVITY_BURST_GAP_SECONDS: Final[float] = 60.0
ACTIVE_APP_GAP_CAP_SECONDS: Final[float] = 60.0
ACTIVE_EVENT_TAGS: Final[frozenset[str]] = frozenset(
    {
        "keystroke",
        "key_press",
        "mouse_click",
        "click",
        "text_input",
        "form_submit",
        "button_click",
        "scroll",
        "scroll_event",
        "navigation",
        "file_save",
    }
)
KEYSTROKE_TAGS: Final[frozenset[str]] = frozenset({"keystroke", "key_press", "keydown"})
CLICK_TAGS: Final[frozenset[str]] = frozenset({"click", "mouse_click", "element_click"})

# =============================================================================
# Configuration & Logging
# =============================================================================

CONFIG_SECTION_KEY: Final[str] = "activity_pipeline"
ENV_DEBUG: Final[str] = "ACTIVITY_PIPELINE_DEBUG"
ENV_LOG_LEVEL: Final[str] = "ACTIVITY_PIPELINE_LOG_LEVEL"
LOGGER_NAME: Final[str] = "activity_pipeline"

LOG_LEVEL_DEBUG: Final[str] = "DEBUG"
LOG_LEVEL_INFO: Final[str] = "INFO"
LOG_LEVEL_WARNING: Final[str] = "WARNING"
LOG_LEVEL_ERROR: Final[str] = "ERROR"
VALID_LOG_LEVELS: Final[tuple[str, ...]] = (
    LOG_LEVEL_DEBUG,
    LOG_LEVEL_INFO,
    LOG_LEVEL_WARNING,
    LOG_LEVEL_ERROR,
)

DEFAULT_LOG_ROTATION_ENABLED: Final[bool] = True
DEFAULT_LOG_MAX_SIZE_MB: Final[int] = 10
MIN_LOG_MAX_SIZE_MB: Final[int] = 1
MAX_LOG_MAX_SIZE_MB: Final[int] = 100
DEFAULT_LOG_BACKUP_COUNT: Final[int] = 3
MAX_LOG_BACKUP_COUNT: Final[int] = 10

# HTTP analyzer
DEFAULT_ANALYZER_TIMEOUT_SECONDS: Final[float] = 120.0
