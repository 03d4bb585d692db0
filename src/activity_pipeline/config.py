"""Configuration management for the activity pipeline.

This module provides configuration classes with validation for the pipeline.
Configuration follows a priority hierarchy:
1. Environment variables (ACTIVITY_PIPELINE_*)
2. Project config file (YAML, under the ``activity_pipeline`` key)
3. Hardcoded defaults in this module

Keys are snake_case. The camelCase names used by capture-source clients
(``intervalMinutes``, ``emergencyRawCap``, ...) are accepted as aliases when
loading.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from activity_pipeline.constants import (
    CONFIG_SECTION_KEY,
    DEFAULT_ACTIVE_APP_WINDOW_MS,
    DEFAULT_ANALYZER_TIMEOUT_SECONDS,
    DEFAULT_APP_CHANGE_LOOKBACK,
    DEFAULT_AUTOSAVE_INTERVAL_SECONDS,
    DEFAULT_DATA_DIR,
    DEFAULT_DUPLICATE_SUPPRESS_WINDOW_MS,
    DEFAULT_EMERGENCY_RAW_CAP,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_MAX_SIZE_MB,
    DEFAULT_LOG_ROTATION_ENABLED,
    DEFAULT_NETWORK_BURST_WINDOW_MS,
    DEFAULT_PERSISTENCE_NAMESPACE,
    DEFAULT_RAW_TAIL_SIZE,
    DEFAULT_SCROLL_CAP_PER_MINUTE,
    DEFAULT_SCROLL_WINDOW_MS,
    DEFAULT_SNAPSHOT_MIN_INTERVAL_MS,
    DEFAULT_STALE_AFTER_HOURS,
    DEFAULT_TEXT_COALESCE_GAP_MS,
    ENV_DEBUG,
    ENV_LOG_LEVEL,
    LOG_LEVEL_DEBUG,
    LOG_LEVEL_INFO,
    MAX_INTERVAL_MINUTES,
    MAX_LOG_BACKUP_COUNT,
    MAX_LOG_MAX_SIZE_MB,
    MIN_AUTOSAVE_INTERVAL_SECONDS,
    MIN_EMERGENCY_RAW_CAP,
    MIN_LOG_MAX_SIZE_MB,
    VALID_LOG_LEVELS,
)
from activity_pipeline.exceptions import ValidationError

logger = logging.getLogger(__name__)


def _lookup(data: dict[str, Any], key: str, alias: str | None, default: Any) -> Any:
    """Read ``key`` from data, falling back to its camelCase alias."""
    if key in data:
        return data[key]
    if alias and alias in data:
        return data[alias]
    return default


def _require_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError(
            f"{name} must be a number",
            field=name,
            value=value,
            expected="number",
        )


def _require_non_negative(name: str, value: int | float) -> None:
    _require_number(name, value)
    if value < 0:
        raise ValidationError(
            f"{name} cannot be negative",
            field=name,
            value=value,
            expected=">= 0",
        )


def validate_interval_minutes(minutes: float) -> None:
    """Validate a flush interval in minutes.

    Raises:
        ValidationError: If the interval is not a positive number within bounds.
    """
    _require_number("interval_minutes", minutes)
    if minutes <= 0:
        raise ValidationError(
            "interval_minutes must be positive",
            field="interval_minutes",
            value=minutes,
            expected="> 0",
        )
    if minutes > MAX_INTERVAL_MINUTES:
        raise ValidationError(
            f"interval_minutes must be at most {MAX_INTERVAL_MINUTES}",
            field="interval_minutes",
            value=minutes,
            expected=f"<= {MAX_INTERVAL_MINUTES}",
        )


@dataclass
class CompactionConfig:
    """Thresholds and stage toggles for the compaction engine.

    Attributes:
        text_coalesce_gap_ms: Maximum gap between text inputs merged into one.
        snapshot_min_interval_ms: Minimum spacing between kept content snapshots.
        scroll_cap_per_minute: Scroll events kept per rolling scroll window.
        scroll_window_ms: Length of the rolling scroll window.
        network_burst_window_ms: Maximum gap between network events of one burst.
        duplicate_suppress_window_ms: Same-type events closer than this are dropped.
        active_app_window_ms: How far around a snapshot to look for app changes.
        app_change_lookback: Kept events searched for a repeated app change.
        remove_useless_events: Enable the useless-event removal stage.
        coalesce_text_inputs: Enable the text coalescing stage.
        coalesce_duplicate_snapshots: Enable the duplicate snapshot stage.
        coalesce_network_bursts: Enable the network burst stage.
        only_snapshot_active_app: Drop snapshots of apps that are not in focus.
    """

    text_coalesce_gap_ms: int = DEFAULT_TEXT_COALESCE_GAP_MS
    snapshot_min_interval_ms: int = DEFAULT_SNAPSHOT_MIN_INTERVAL_MS
    scroll_cap_per_minute: int = DEFAULT_SCROLL_CAP_PER_MINUTE
    scroll_window_ms: int = DEFAULT_SCROLL_WINDOW_MS
    network_burst_window_ms: int = DEFAULT_NETWORK_BURST_WINDOW_MS
    duplicate_suppress_window_ms: int = DEFAULT_DUPLICATE_SUPPRESS_WINDOW_MS
    active_app_window_ms: int = DEFAULT_ACTIVE_APP_WINDOW_MS
    app_change_lookback: int = DEFAULT_APP_CHANGE_LOOKBACK
    remove_useless_events: bool = True
    coalesce_text_inputs: bool = True
    coalesce_duplicate_snapshots: bool = True
    coalesce_network_bursts: bool = True
    only_snapshot_active_app: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: If any configuration value is invalid.
        """
        for name in (
            "text_coalesce_gap_ms",
            "snapshot_min_interval_ms",
            "scroll_cap_per_minute",
            "network_burst_window_ms",
            "duplicate_suppress_window_ms",
            "active_app_window_ms",
            "app_change_lookback",
        ):
            _require_non_negative(name, getattr(self, name))
        _require_number("scroll_window_ms", self.scroll_window_ms)
        if self.scroll_window_ms <= 0:
            raise ValidationError(
                "scroll_window_ms must be positive",
                field="scroll_window_ms",
                value=self.scroll_window_ms,
                expected="> 0",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompactionConfig":
        """Create config from dictionary.

        Args:
            data: Configuration dictionary (snake_case or camelCase keys).

        Returns:
            CompactionConfig instance.
        """
        return cls(
            text_coalesce_gap_ms=_lookup(
                data, "text_coalesce_gap_ms", "textCoalesceGapMs", DEFAULT_TEXT_COALESCE_GAP_MS
            ),
            snapshot_min_interval_ms=_lookup(
                data,
                "snapshot_min_interval_ms",
                "snapshotMinIntervalMs",
                DEFAULT_SNAPSHOT_MIN_INTERVAL_MS,
            ),
            scroll_cap_per_minute=_lookup(
                data, "scroll_cap_per_minute", "scrollCapPerMinute", DEFAULT_SCROLL_CAP_PER_MINUTE
            ),
            scroll_window_ms=data.get("scroll_window_ms", DEFAULT_SCROLL_WINDOW_MS),
            network_burst_window_ms=_lookup(
                data,
                "network_burst_window_ms",
                "networkBurstWindowMs",
                DEFAULT_NETWORK_BURST_WINDOW_MS,
            ),
            duplicate_suppress_window_ms=_lookup(
                data,
                "duplicate_suppress_window_ms",
                "duplicateSuppressWindowMs",
                DEFAULT_DUPLICATE_SUPPRESS_WINDOW_MS,
            ),
            active_app_window_ms=data.get("active_app_window_ms", DEFAULT_ACTIVE_APP_WINDOW_MS),
            app_change_lookback=data.get("app_change_lookback", DEFAULT_APP_CHANGE_LOOKBACK),
            remove_useless_events=_lookup(
                data, "remove_useless_events", "removeUselessEvents", True
            ),
            coalesce_text_inputs=_lookup(data, "coalesce_text_inputs", "coalesceTextInputs", True),
            coalesce_duplicate_snapshots=_lookup(
                data, "coalesce_duplicate_snapshots", "coalesceDuplicateSnapshots", True
            ),
            coalesce_network_bursts=_lookup(
                data, "coalesce_network_bursts", "coalesceNetworkBursts", True
            ),
            only_snapshot_active_app=_lookup(
                data, "only_snapshot_active_app", "onlySnapshotActiveApp", True
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "text_coalesce_gap_ms": self.text_coalesce_gap_ms,
            "snapshot_min_interval_ms": self.snapshot_min_interval_ms,
            "scroll_cap_per_minute": self.scroll_cap_per_minute,
            "scroll_window_ms": self.scroll_window_ms,
            "network_burst_window_ms": self.network_burst_window_ms,
            "duplicate_suppress_window_ms": self.duplicate_suppress_window_ms,
            "active_app_window_ms": self.active_app_window_ms,
            "app_change_lookback": self.app_change_lookback,
            "remove_useless_events": self.remove_useless_events,
            "coalesce_text_inputs": self.coalesce_text_inputs,
            "coalesce_duplicate_snapshots": self.coalesce_duplicate_snapshots,
            "coalesce_network_bursts": self.coalesce_network_bursts,
            "only_snapshot_active_app": self.only_snapshot_active_app,
        }


@dataclass
class PersistenceConfig:
    """Configuration for crash-recovery snapshots.

    Attributes:
        enabled: Whether snapshots are written at all.
        data_dir: Directory holding snapshot files and the result database.
        namespace: Prefix of snapshot file names.
        autosave_interval_seconds: Seconds between autosave ticks.
        raw_tail_size: Number of most recent raw events kept in a snapshot.
        stale_after_hours: Snapshots older than this are not recoverable.
    """

    enabled: bool = True
    data_dir: str = DEFAULT_DATA_DIR
    namespace: str = DEFAULT_PERSISTENCE_NAMESPACE
    autosave_interval_seconds: int = DEFAULT_AUTOSAVE_INTERVAL_SECONDS
    raw_tail_size: int = DEFAULT_RAW_TAIL_SIZE
    stale_after_hours: float = DEFAULT_STALE_AFTER_HOURS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: If any configuration value is invalid.
        """
        if not self.namespace:
            raise ValidationError(
                "namespace cannot be empty",
                field="namespace",
                value=self.namespace,
                expected="non-empty string",
            )
        _require_number("autosave_interval_seconds", self.autosave_interval_seconds)
        if self.autosave_interval_seconds < MIN_AUTOSAVE_INTERVAL_SECONDS:
            raise ValidationError(
                f"autosave_interval_seconds must be at least {MIN_AUTOSAVE_INTERVAL_SECONDS}",
                field="autosave_interval_seconds",
                value=self.autosave_interval_seconds,
                expected=f">= {MIN_AUTOSAVE_INTERVAL_SECONDS}",
            )
        _require_non_negative("raw_tail_size", self.raw_tail_size)
        _require_number("stale_after_hours", self.stale_after_hours)
        if self.stale_after_hours <= 0:
            raise ValidationError(
                "stale_after_hours must be positive",
                field="stale_after_hours",
                value=self.stale_after_hours,
                expected="> 0",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistenceConfig":
        """Create config from dictionary.

        Args:
            data: Configuration dictionary.

        Returns:
            PersistenceConfig instance.
        """
        return cls(
            enabled=data.get("enabled", True),
            data_dir=str(data.get("data_dir", DEFAULT_DATA_DIR)),
            namespace=data.get("namespace", DEFAULT_PERSISTENCE_NAMESPACE),
            autosave_interval_seconds=data.get(
                "autosave_interval_seconds", DEFAULT_AUTOSAVE_INTERVAL_SECONDS
            ),
            raw_tail_size=data.get("raw_tail_size", DEFAULT_RAW_TAIL_SIZE),
            stale_after_hours=data.get("stale_after_hours", DEFAULT_STALE_AFTER_HOURS),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "data_dir": self.data_dir,
            "namespace": self.namespace,
            "autosave_interval_seconds": self.autosave_interval_seconds,
            "raw_tail_size": self.raw_tail_size,
            "stale_after_hours": self.stale_after_hours,
        }

    def get_data_dir(self) -> Path:
        """Get the data directory as an expanded path."""
        return Path(self.data_dir).expanduser()


@dataclass
class AnalyzerConfig:
    """Configuration for the HTTP analysis transport.

    Attributes:
        endpoint: URL the optimized batch is POSTed to (None disables HTTP).
        timeout: Request timeout in seconds.
        api_key_env: Environment variable holding the bearer token.
    """

    endpoint: str | None = None
    timeout: float = DEFAULT_ANALYZER_TIMEOUT_SECONDS
    api_key_env: str = "ACTIVITY_PIPELINE_API_KEY"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: If any configuration value is invalid.
        """
        if self.endpoint is not None and not self.endpoint.startswith(("http://", "https://")):
            raise ValidationError(
                f"Invalid analyzer endpoint: {self.endpoint}",
                field="endpoint",
                value=self.endpoint,
                expected="http:// or https:// URL",
            )
        _require_number("timeout", self.timeout)
        if self.timeout <= 0:
            raise ValidationError(
                "timeout must be positive",
                field="timeout",
                value=self.timeout,
                expected="> 0",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalyzerConfig":
        """Create config from dictionary."""
        return cls(
            endpoint=data.get("endpoint"),
            timeout=data.get("timeout", DEFAULT_ANALYZER_TIMEOUT_SECONDS),
            api_key_env=data.get("api_key_env", "ACTIVITY_PIPELINE_API_KEY"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "endpoint": self.endpoint,
            "timeout": self.timeout,
            "api_key_env": self.api_key_env,
        }

    def get_api_key(self) -> str | None:
        """Read the bearer token from the environment."""
        return os.environ.get(self.api_key_env) or None


@dataclass
class LogRotationConfig:
    """Configuration for log file rotation.

    Attributes:
        enabled: Whether to enable log rotation.
        max_size_mb: Maximum log file size in megabytes before rotation.
        backup_count: Number of backup files to keep.
    """

    enabled: bool = DEFAULT_LOG_ROTATION_ENABLED
    max_size_mb: int = DEFAULT_LOG_MAX_SIZE_MB
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: If any configuration value is invalid.
        """
        _require_number("max_size_mb", self.max_size_mb)
        if not MIN_LOG_MAX_SIZE_MB <= self.max_size_mb <= MAX_LOG_MAX_SIZE_MB:
            raise ValidationError(
                f"max_size_mb must be between {MIN_LOG_MAX_SIZE_MB} and {MAX_LOG_MAX_SIZE_MB}",
                field="max_size_mb",
                value=self.max_size_mb,
                expected=f"{MIN_LOG_MAX_SIZE_MB}-{MAX_LOG_MAX_SIZE_MB}",
            )
        _require_number("backup_count", self.backup_count)
        if not 0 <= self.backup_count <= MAX_LOG_BACKUP_COUNT:
            raise ValidationError(
                f"backup_count must be between 0 and {MAX_LOG_BACKUP_COUNT}",
                field="backup_count",
                value=self.backup_count,
                expected=f"0-{MAX_LOG_BACKUP_COUNT}",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogRotationConfig":
        """Create config from dictionary."""
        return cls(
            enabled=data.get("enabled", DEFAULT_LOG_ROTATION_ENABLED),
            max_size_mb=data.get("max_size_mb", DEFAULT_LOG_MAX_SIZE_MB),
            backup_count=data.get("backup_count", DEFAULT_LOG_BACKUP_COUNT),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "max_size_mb": self.max_size_mb,
            "backup_count": self.backup_count,
        }

    def get_max_bytes(self) -> int:
        """Get maximum log file size in bytes."""
        return self.max_size_mb * 1024 * 1024


@dataclass
class PipelineConfig:
    """Top-level activity pipeline configuration.

    Attributes:
        interval_minutes: Minutes between periodic flushes.
        emergency_raw_cap: Raw buffer size that forces an out-of-schedule flush.
        compaction: Compaction thresholds and toggles.
        persistence: Snapshot and recovery settings.
        analyzer: HTTP analysis transport settings.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional log file path (stderr when unset).
        log_rotation: Log file rotation configuration.
    """

    interval_minutes: float = DEFAULT_INTERVAL_MINUTES
    emergency_raw_cap: int = DEFAULT_EMERGENCY_RAW_CAP
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    log_level: str = LOG_LEVEL_INFO
    log_file: str | None = None
    log_rotation: LogRotationConfig = field(default_factory=LogRotationConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValidationError: If any configuration value is invalid.
        """
        validate_interval_minutes(self.interval_minutes)

        _require_number("emergency_raw_cap", self.emergency_raw_cap)
        if self.emergency_raw_cap < MIN_EMERGENCY_RAW_CAP:
            raise ValidationError(
                f"emergency_raw_cap must be at least {MIN_EMERGENCY_RAW_CAP}",
                field="emergency_raw_cap",
                value=self.emergency_raw_cap,
                expected=f">= {MIN_EMERGENCY_RAW_CAP}",
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValidationError(
                f"Invalid log level: {self.log_level}",
                field="log_level",
                value=self.log_level,
                expected=f"one of {VALID_LOG_LEVELS}",
            )

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        """Create config from dictionary.

        Compaction keys may sit either in a nested ``compaction`` mapping or
        at the top level (the flat layout capture clients send).

        Args:
            data: Configuration dictionary.

        Returns:
            PipelineConfig instance.

        Raises:
            ValidationError: If configuration values are invalid.
        """
        compaction_data = {**data, **(data.get("compaction") or {})}
        return cls(
            interval_minutes=_lookup(
                data, "interval_minutes", "intervalMinutes", DEFAULT_INTERVAL_MINUTES
            ),
            emergency_raw_cap=_lookup(
                data, "emergency_raw_cap", "emergencyRawCap", DEFAULT_EMERGENCY_RAW_CAP
            ),
            compaction=CompactionConfig.from_dict(compaction_data),
            persistence=PersistenceConfig.from_dict(data.get("persistence", {})),
            analyzer=AnalyzerConfig.from_dict(data.get("analyzer", {})),
            log_level=data.get("log_level", LOG_LEVEL_INFO),
            log_file=data.get("log_file"),
            log_rotation=LogRotationConfig.from_dict(data.get("log_rotation", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "interval_minutes": self.interval_minutes,
            "emergency_raw_cap": self.emergency_raw_cap,
            "compaction": self.compaction.to_dict(),
            "persistence": self.persistence.to_dict(),
            "analyzer": self.analyzer.to_dict(),
            "log_level": self.log_level,
            "log_file": self.log_file,
            "log_rotation": self.log_rotation.to_dict(),
        }

    def get_effective_log_level(self) -> str:
        """Get effective log level, considering environment variable overrides.

        Priority (highest to lowest):
        1. ACTIVITY_PIPELINE_DEBUG=1 → DEBUG
        2. ACTIVITY_PIPELINE_LOG_LEVEL environment variable
        3. Config file log_level setting
        4. Default: INFO
        """
        if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
            return LOG_LEVEL_DEBUG

        env_level = os.environ.get(ENV_LOG_LEVEL, "").upper()
        if env_level in VALID_LOG_LEVELS:
            return env_level

        if self.log_level.upper() in VALID_LOG_LEVELS:
            return self.log_level.upper()

        return LOG_LEVEL_INFO


def load_pipeline_config(config_file: Path) -> PipelineConfig:
    """Load pipeline configuration from a YAML file.

    Reads the ``activity_pipeline`` section of the file.

    Args:
        config_file: Path to the YAML config file.

    Returns:
        PipelineConfig with settings (defaults if not configured).

    Note:
        Returns defaults on error rather than raising, so a capture session
        can start even with an invalid config file.
    """
    if not config_file.exists():
        logger.debug(f"No config file at {config_file}, using defaults")
        return PipelineConfig()

    try:
        with open(config_file, encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        section = config_data.get(CONFIG_SECTION_KEY, {}) or {}
        config = PipelineConfig.from_dict(section)
        logger.debug(
            f"Loaded pipeline config: interval={config.interval_minutes}m, "
            f"emergency_cap={config.emergency_raw_cap}"
        )
        return config

    except ValidationError as e:
        logger.warning(f"Invalid pipeline config in {config_file}: {e}")
        logger.info("Using default configuration")
        return PipelineConfig()

    except (yaml.YAMLError, AttributeError) as e:
        logger.warning(f"Failed to parse config YAML from {config_file}: {e}")
        return PipelineConfig()

    except OSError as e:
        logger.warning(f"Failed to read config from {config_file}: {e}")
        return PipelineConfig()


def save_pipeline_config(config_file: Path, config: PipelineConfig) -> None:
    """Save pipeline configuration, preserving other top-level sections.

    Args:
        config_file: Path to the YAML config file.
        config: Configuration to write under the ``activity_pipeline`` key.
    """
    existing: dict[str, Any] = {}
    if config_file.exists():
        with open(config_file, encoding="utf-8") as f:
            existing = yaml.safe_load(f) or {}

    existing[CONFIG_SECTION_KEY] = config.to_dict()

    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        yaml.dump(existing, f, default_flow_style=False, sort_keys=False)
    logger.debug(f"Saved pipeline config to {config_file}")
