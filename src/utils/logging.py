"""Logging configuration for Job Tracker Sync."""

import logging
import sys

# Logger name for the application
LOGGER_NAME = "job_tracker"

# Default log format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Track if logging has been configured
_configured = False


def configure_logging(
    level: str | None = None,
    format_string: str = LOG_FORMAT,
    date_format: str = DATE_FORMAT,
) -> logging.Logger:
    """Configure and return the main application logger.

    The ``src`` package logger is routed through the same handler so that
    modules using ``logging.getLogger(__name__)`` share the output format.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO if not specified.
        format_string: Format string for log messages.
        date_format: Format string for timestamps.

    Returns:
        The configured root application logger.
    """
    global _configured

    logger = logging.getLogger(LOGGER_NAME)
    package_logger = logging.getLogger("src")

    if level is None:
        level = "INFO"
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.setLevel(log_level)
    package_logger.setLevel(log_level)

    if not _configured:
        logger.handlers.clear()
        package_logger.handlers.clear()

        formatter = logging.Formatter(format_string, datefmt=date_format)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)

        logger.addHandler(console_handler)
        package_logger.addHandler(console_handler)

        # Prevent propagation to root logger
        logger.propagate = False
        package_logger.propagate = False

        _configured = True
    else:
        for handler in logger.handlers:
            handler.setLevel(log_level)

    return logger


def reset_logging() -> None:
    """Reset logging configuration (useful for testing)."""
    global _configured

    for name in (LOGGER_NAME, "src"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True

    _configured = False
