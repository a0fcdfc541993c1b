"""Logging configuration for engagement-service.

Two formatters, one switch (LOG_JSON):

  _ContainerFormatter: single-line, human-readable, for local dev.
    Unit-session fields are appended as ``key=value`` pairs so a
    developer tailing the terminal can still tell two units apart.

  _JsonFormatter: one JSON object per line, for production log
    pipelines.  Session fields and the ``correction`` marker become
    top-level keys so "all guard corrections for session X" is a filter,
    not a regex:

      {"level": "INFO", "correction": "guard", "session_id": "5f0c..."}

The session fields are attached by SessionContextFilter (see
engagement/core/log_context.py), installed on the handler so records
propagated from every module logger pass through it.
"""

from __future__ import annotations

import json
import logging
import sys

from engagement.core.log_context import SessionContextFilter

# Fields the session filter or call sites may attach to a LogRecord.
_CONTEXT_FIELDS = (
    "session_id",
    "user_id",
    "course_id",
    "unit_index",
    "event_name",
    "correction",
    "request_id",
)


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    - Always: ISO-8601 timestamp, level, logger name, message
    - WARNING+: appends [filename:lineno]
    - Session context, when present, trails the message
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        line = super().format(record)

        pairs = [
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        ]
        if pairs:
            line = f"{line}  {' '.join(pairs)}"
        return line


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter: one object per record."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger for container environments.

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: Emit JSON lines instead of human-readable text.
                     Controlled by LOG_JSON in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())
    handler.addFilter(SessionContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Keep third-party loggers from flooding at DEBUG
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "httpcore", "httpx"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
