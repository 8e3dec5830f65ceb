"""
Logging configuration and utilities.

Configures the store's logger from ``LoggingConfig`` for the CLI; library code
only ever calls ``logging.getLogger(__name__)``.
"""

import logging
import sys
from pathlib import Path

from health_tracker_store.utils.parameters import LoggingConfig

# Drive client loggers that are chatty at INFO.
NOISY_LOGGERS = ("googleapiclient.discovery_cache", "google_auth_oauthlib.flow")


def _build_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, logger_name: str | None = None) -> logging.Logger:
    """
    Set up logging for the application.

    Replaces any handlers previously attached to the logger, so calling it
    once per CLI command is safe.

    Args:
        config: Logging configuration.
        logger_name: Logger to configure; the root logger when None.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(logger_name)
    level = getattr(logging, config.level.upper(), logging.INFO)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(config.format)

    if config.console:
        logger.addHandler(_build_handler(logging.StreamHandler(sys.stderr), level, formatter))

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(
            _build_handler(logging.FileHandler(log_file, encoding="utf-8"), level, formatter)
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (typically ``__name__``)."""
    return logging.getLogger(name)
