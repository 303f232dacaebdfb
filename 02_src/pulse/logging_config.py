"""Structured JSON logging for Agent Pulse.

Every record is one JSON object per line. Callers attach structured data with
``extra={"context": {...}}``; the identifiers in ``CORRELATION_KEYS`` are
lifted out of the context to top-level fields so deliveries and events can be
grepped across modules, and the rest stays under ``"context"``.

Environment:
    PULSE_LOG_LEVEL  root level (falls back to LOG_LEVEL, then INFO)
    PULSE_LOG_FILE   rotating log file (defaults to 04_logs/app.log)
"""

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_LOG_PATH

CORRELATION_KEYS = ("event_id", "delivery_id", "agent_id")

# Chatty third-party loggers kept at WARNING unless the root is at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with correlation ids promoted from context."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            rest = dict(context)
            for key in CORRELATION_KEYS:
                if key in rest:
                    entry[key] = rest.pop(key)
            if rest:
                entry["context"] = rest
        elif context is not None:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def resolve_log_level(log_level: str | None = None) -> str:
    """Explicit level, else PULSE_LOG_LEVEL, else LOG_LEVEL, else INFO."""
    level = (
        log_level or os.getenv("PULSE_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO"
    )
    level = level.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"unknown log level: {level}")
    return level


def build_logging_config(log_level: str, log_file: str | Path) -> dict[str, Any]:
    """dictConfig for a console plus rotating-file JSON setup."""
    quiet_level = "DEBUG" if log_level == "DEBUG" else "WARNING"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(log_file),
                "maxBytes": 10 * 1024 * 1024,
                "backupCount": 5,
                "formatter": "json",
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {name: {"level": quiet_level} for name in QUIET_LOGGERS},
        "root": {
            "level": log_level,
            "handlers": ["file", "console"],
        },
    }


def setup_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """
    Configure root logging for the service.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. See resolve_log_level.
        log_file: Rotating log file. Defaults to PULSE_LOG_FILE or 04_logs/app.log.
    """
    level = resolve_log_level(log_level)
    log_path = Path(log_file or os.getenv("PULSE_LOG_FILE") or DEFAULT_LOG_PATH)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(build_logging_config(level, log_path))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
