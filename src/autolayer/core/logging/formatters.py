# src/autolayer/core/logging/formatters.py
"""
Custom logging formatters.

  - JsonFormatter: one JSON object per line for log collectors. Carries the
    service name, environment, package version and correlation id, plus every
    `extra` field the repositories attach (model, operation, duration_ms, ...).
  - ColorFormatter: compact ANSI-coloured lines for a developer terminal.

`make_dict_config()` picks one of them from settings.LOG_FORMAT.
"""

import json
import logging
from typing import Any
from logging import LogRecord

from autolayer.utils.project import get_project_name, get_project_version

PROJECT_VERSION = get_project_version()

# Attributes every LogRecord has; anything else on the record came from `extra`
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "correlation_id"}


def record_extras(record: LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    """
    Structured JSON formatter.

    Construction:
      - env: environment name ("development", "production", ...)
      - service: logical service name, defaults to the project name
      - datefmt: passed to logging.Formatter.formatTime

    Non-serializable extras are rendered with str() so formatting never raises.
    """

    def __init__(self, *, env: str | None = None, service: str | None = None, datefmt: str | None = None):
        super().__init__(datefmt=datefmt)
        self.env = env
        self.service = service or get_project_name()

    def format(self, record: LogRecord) -> str:
        log_record: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pathname": record.pathname,
            "lineno": record.lineno,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "service": self.service,
            "env": self.env,
            "version": PROJECT_VERSION,
        }

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)

        for k, v in record_extras(record).items():
            if k in log_record:
                continue
            try:
                json.dumps(v)
                log_record[k] = v
            except (TypeError, ValueError):
                log_record[k] = str(v)

        return json.dumps(log_record, ensure_ascii=False, default=str)


class ColorFormatter(logging.Formatter):
    """
    Development-friendly coloured formatter:

        TIMESTAMP | LEVEL | LOGGER | CORRELATION_ID | MESSAGE key=value ...

    Only the level name is coloured. Extras are appended as key=value pairs so
    repository events stay readable (`repo.get_where.success model=WeatherForecast count=3`).
    """

    COLOR_CODES = {
        "DEBUG": "\033[1;36;47m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;41m",
        "RESET": "\033[0m",
    }

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)

    def format(self, record: LogRecord) -> str:
        color = self.COLOR_CODES.get(record.levelname, "")
        reset = self.COLOR_CODES["RESET"]
        timestamp = self.formatTime(record, self.datefmt)

        base = (
            f"{timestamp} | {color}{record.levelname:<10}{reset} | "
            f"{record.name:<30} | "
            f"{getattr(record, 'correlation_id', '-'):<10} | "
            f"{record.getMessage()}"
        )

        extras = record_extras(record)
        if extras:
            base += " " + " ".join(f"{k}={v}" for k, v in extras.items())

        if record.exc_info:
            base = base + "\n" + self.formatException(record.exc_info)

        return base
