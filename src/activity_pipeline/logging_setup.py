"""Logging configuration for the activity pipeline."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from activity_pipeline.config import LogRotationConfig, PipelineConfig
from activity_pipeline.constants import LOGGER_NAME


def configure_logging(
    log_level: str,
    log_file: Path | None = None,
    log_rotation: LogRotationConfig | None = None,
) -> logging.Logger:
    """Configure the package logger.

    Safe to call repeatedly: existing handlers are dropped before new ones
    are attached.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional log file path. Logs go to stderr when unset.
        log_rotation: Optional log rotation configuration.

    Returns:
        The configured package logger.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    pipeline_logger = logging.getLogger(LOGGER_NAME)
    pipeline_logger.setLevel(level)

    # Host applications configure the root logger themselves
    pipeline_logger.propagate = False
    pipeline_logger.handlers.clear()

    if level == logging.DEBUG:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    if log_file:
        try:
            rotation = log_rotation or LogRotationConfig()
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

            file_handler: logging.Handler
            if rotation.enabled:
                file_handler = RotatingFileHandler(
                    log_file,
                    mode="a",
                    maxBytes=rotation.get_max_bytes(),
                    backupCount=rotation.backup_count,
                    encoding="utf-8",
                )
            else:
                file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")

            file_handler.setFormatter(formatter)
            pipeline_logger.addHandler(file_handler)
            return pipeline_logger
        except OSError as e:
            pipeline_logger.warning(f"Could not set up file logging to {log_file}: {e}")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    pipeline_logger.addHandler(stream_handler)
    return pipeline_logger


def configure_logging_from_config(config: PipelineConfig) -> logging.Logger:
    """Configure logging from a loaded pipeline config, honoring env overrides."""
    log_file = Path(config.log_file).expanduser() if config.log_file else None
    return configure_logging(config.get_effective_log_level(), log_file, config.log_rotation)
