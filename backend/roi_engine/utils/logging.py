# backend/roi_engine/utils/logging.py
"""
Logging configuration for the ROI engine.

This module provides centralized logging setup with:
- Level and format from settings (LOG_LEVEL, LOG_FORMAT)
- Correlation ID on every record (request or job run)
- JSON output for log aggregation in production
- Quieter third-party HTTP client loggers

Usage:
    from roi_engine.utils.logging import setup_logging

    # In main.py (and scripts), before anything logs
    setup_logging()

Log Levels:
    DEBUG   - Per-day curve detail, cache hits, raw provider payload sizes
    INFO    - Job runs, recomputes, imports, signal publications
    WARNING - Data gaps, provider retries, swallowed invalidation failures
    ERROR   - Failed recomputes, provider outages
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from roi_engine.config import settings
from roi_engine.utils.context import get_correlation_id

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"

# Lowered to WARNING; httpx logs every provider request at INFO
NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "urllib3",
    "asyncio",
    "multipart",
]

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# LogRecord attributes that are not "extra" fields
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"correlation_id", "message", "asctime"}


# =============================================================================
# FILTER / FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Stamps `record.correlation_id` from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"timestamp", "level", "logger", "correlation_id", "message",
     "exception"?, "extra"?}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry)


# =============================================================================
# SETUP
# =============================================================================

def get_log_level(level: str) -> int:
    """
    Raises:
        ValueError: If the level name is unknown
    """
    name = level.upper().strip()
    if name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: '{level}'. Valid levels are: {', '.join(LOG_LEVELS)}")
    return LOG_LEVELS[name]


def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
) -> None:
    """
    Configure the root logger once at startup.

    Args:
        level: Overrides settings.log_level
        log_format: "text" or "json"; overrides settings.log_format
        suppress_noisy_loggers: Lower NOISY_LOGGERS to WARNING
    """
    level_name = level or settings.log_level
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=DEFAULT_TEXT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.setLevel(get_log_level(level_name))
    root.handlers.clear()
    root.addHandler(handler)

    if suppress_noisy_loggers:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level_name}, format={format_type}")
