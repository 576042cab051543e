"""
Centralized logging configuration with structured JSON output.

Provides:
- JSON structured logging for log aggregation
- Human-readable console logging for interactive use
- Per-module log level configuration

All output goes to stderr so that ``export`` can write the Prometheus
exposition to stdout.

Usage:
    from sentry_exporter.core.logging_config import get_logger

    logger = get_logger(__name__)
    log_with_context(logger, "info", "Teams refreshed", team_count=12)
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
LOG_FORMATS = ("text", "json")


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.

    Produces one machine-readable object per line.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string"""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields from log_with_context()
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ContextFormatter(logging.Formatter):
    """
    Human-readable formatter for console output.

    Colours the level name when stderr is a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if sys.stderr.isatty():
            color = self.COLORS.get(levelname, "")
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, use JSON formatter; if False, use human-readable format

    Example:
        setup_logging(level="DEBUG")
        setup_logging(level="INFO", json_output=True)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)

    if json_output:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            ContextFormatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(console_handler)

    # One line per request at INFO is too noisy for a scrape loop
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for the specified module.

    Args:
        name: Module name (use __name__ in calling module)
    """
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """
    Log message with additional context fields.

    The fields are merged into the JSON object by JSONFormatter.

    Example:
        log_with_context(logger, "info", "Collection cycle complete", duration_s=1.2, api_calls=8)
    """
    log_func = getattr(logger, level.lower())
    log_func(message, extra={"extra_fields": context})
