"""Logging configuration for course-core.

Two output shapes share one root handler:

  _ContainerFormatter: single-line text for a developer's terminal.
    WARNING and above carry the source location, so a rejected
    transition or a failed certificate call points straight at the
    guard that produced it.

  _JsonFormatter: JSON Lines for production log aggregation.
    Ledger and lifecycle code attach tenant_id / user_id / course_id as
    `extra=` fields; here they become top-level keys, so a query like
      tenant_id == "acme" AND level == "ERROR"
    works without regex.  Set LOG_JSON=true to switch.

Request IDs arrive through the RequestContextMiddleware's logging filter
and show up in both shapes.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    - Always: ISO-8601 timestamp, level, logger name, message
    - WARNING+: appends [filename:lineno]
    - ERROR/CRITICAL: stack trace included when exc_info is present
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
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON formatter: one object per line.

    Context fields come from two places: the request middleware
    (request_id, method, path, status_code, duration_ms) and the domain
    services (tenant_id, user_id, course_id, actor_id, attempt_number,
    effect).
    """

    _CONTEXT_FIELDS = (
        "request_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
        "tenant_id",
        "user_id",
        "course_id",
        "actor_id",
        "attempt_number",
        "effect",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
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
        json_format: If True, emit JSON lines. If False, human-readable.
                     Controlled by LOG_JSON env var in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Keep third-party loggers from flooding at DEBUG
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
