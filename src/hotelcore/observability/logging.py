"""JSON log lines on stdout, one object per record.

Domain modules log through logging.getLogger(__name__) and pass structured
context as extra={"extra_fields": {...}}. configure_logging() attaches the
JSON handler once to the "hotelcore" package logger so every child logger
propagates to it. Field names follow Cloud Logging's structured format.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

ROOT_LOGGER = "hotelcore"

# Keys the formatter owns; extra_fields may not overwrite them
_RESERVED = frozenset({"time", "severity", "logger", "message", "correlation_id", "exception"})


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            entry.update({k: v for k, v in extra_fields.items() if k not in _RESERVED})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def level_from_env(default: int = logging.INFO) -> int:
    """LOG_LEVEL as a logging level; unknown names fall back to default."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "").upper())
    return level if isinstance(level, int) else default


def get_logger(name: str) -> logging.Logger:
    """Return a logger that writes JSON, attaching the handler only once."""
    logger = logging.getLogger(name)
    if not any(isinstance(h.formatter, JsonFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level_from_env())
        logger.propagate = False
    return logger


def configure_logging() -> logging.Logger:
    """Route every hotelcore.* logger to stdout as JSON."""
    return get_logger(ROOT_LOGGER)
