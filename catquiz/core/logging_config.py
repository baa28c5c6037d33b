"""
Centralized logging configuration with structured logging support.
"""
import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional, Union

from catquiz.core.config import settings

# Attempt ID correlation for every record emitted while one "fetch next
# question" call is running.
attempt_id_context: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)

# Structured fields copied from ``extra=`` into JSON output when present.
_EXTRA_FIELDS = (
    "scale_id",
    "person_id",
    "item_id",
    "stage",
    "status",
    "iterations",
    "ability",
    "model",
)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for production logging.

    Produces structured log entries with consistent fields for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        attempt_id = attempt_id_context.get()
        if attempt_id:
            log_entry["attempt_id"] = attempt_id

        for field_name in _EXTRA_FIELDS:
            if hasattr(record, field_name):
                log_entry[field_name] = getattr(record, field_name)

        # Add source location for error-level logs
        if record.levelno >= logging.ERROR:
            log_entry["source"] = f"{record.pathname}:{record.lineno}"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging() -> None:
    """
    Configure logging for the engine.

    Configures:
    - Log level from settings
    - JSON formatting for production (structured for log aggregators)
    - Human-readable format for development
    - Attempt ID correlation via context variables
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    is_production = settings.ENV == "production"

    logging_config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": JSONFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "json" if is_production else "default",
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
        "loggers": {
            "catquiz": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            # Per-iteration solver output only when explicitly at DEBUG
            "catquiz.core.cat.mathcat": {
                "level": log_level if settings.SOLVER_DEBUG else max(log_level, logging.INFO),
                "propagate": True,
            },
        },
    }

    logging.config.dictConfig(logging_config)


@contextmanager
def attempt_context(attempt_id: Union[str, int]) -> Generator[None, None, None]:
    """Bind ``attempt_id`` to every log record emitted inside the block."""
    token = attempt_id_context.set(str(attempt_id))
    try:
        yield
    finally:
        attempt_id_context.reset(token)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
