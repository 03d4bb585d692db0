"""Custom exceptions for the activity pipeline.

All exceptions inherit from PipelineError, allowing callers to catch every
pipeline-related error with a single except clause if desired.

Exception hierarchy:
    PipelineError (base)
    ├── ConfigurationError
    │   └── ValidationError
    ├── SessionError
    ├── IngestionError
    ├── CompactionError
    ├── AnalysisError
    └── PersistenceError
"""

from pathlib import Path
from typing import Any


class PipelineError(Exception):
    """Base exception for all activity pipeline errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize pipeline error.

        Args:
            message: Error description.
            details: Optional dictionary with additional context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PipelineError):
    """Raised when configuration is invalid or cannot be loaded."""

    def __init__(
        self,
        message: str,
        config_file: Path | None = None,
        key: str | None = None,
    ):
        """Initialize configuration error.

        Args:
            message: Error description.
            config_file: Path to the problematic config file.
            key: The configuration key that caused the error.
        """
        details = {}
        if config_file:
            details["config_file"] = str(config_file)
        if key:
            details["key"] = key
        super().__init__(message, details)
        self.config_file = config_file
        self.key = key


class ValidationError(ConfigurationError):
    """Raised when configuration values fail validation.

    Examples:
        - Non-positive flush interval
        - Negative coalescing window
        - Unknown log level
    """

    def __init__(
        self,
        message: str,
        field: str,
        value: Any = None,
        expected: str | None = None,
    ):
        """Initialize validation error.

        Args:
            message: Error description.
            field: The field that failed validation.
            value: The invalid value (will be truncated if too long).
            expected: Description of expected value format.
        """
        super().__init__(message)
        self.details["field"] = field
        if value is not None:
            value_str = str(value)
            self.details["value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str
        if expected:
            self.details["expected"] = expected
        self.field = field
        self.value = value
        self.expected = expected


# =============================================================================
# Runtime Errors
# =============================================================================


class SessionError(PipelineError):
    """Raised when an operation needs an active session and there is none."""

    def __init__(self, message: str, session_id: str | None = None):
        details = {"session_id": session_id} if session_id else None
        super().__init__(message, details)
        self.session_id = session_id


class IngestionError(PipelineError):
    """Raised when a raw event is malformed or missing required fields."""

    def __init__(self, message: str, event_type: str | None = None):
        details = {"event_type": event_type} if event_type else None
        super().__init__(message, details)
        self.event_type = event_type


class CompactionError(PipelineError):
    """Raised when a single event cannot be normalized during compaction."""

    def __init__(self, message: str, event_type: str | None = None):
        details = {"event_type": event_type} if event_type else None
        super().__init__(message, details)
        self.event_type = event_type


class AnalysisError(PipelineError):
    """Raised when the external analysis service call fails."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        chunk_number: int | None = None,
        cause: Exception | None = None,
    ):
        details: dict[str, Any] = {}
        if session_id:
            details["session_id"] = session_id
        if chunk_number is not None:
            details["chunk_number"] = chunk_number
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.session_id = session_id
        self.chunk_number = chunk_number
        self.cause = cause


class PersistenceError(PipelineError):
    """Raised when local snapshot or result storage fails."""

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        cause: Exception | None = None,
    ):
        details: dict[str, Any] = {}
        if path:
            details["path"] = str(path)
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.path = path
        self.cause = cause
