# src/autolayer/core/logging/builder.py
"""
Logging builder: create and apply a dictConfig logging configuration.

  - make_dict_config(settings): builds the dictConfig mapping (pure, testable)
  - setup_logging(settings): creates LOG_DIR when writing files, applies the
    mapping and installs CorrelationIdFilter on the root logger as a safety net

The library itself never calls setup_logging(); the host application (or the
test suite) decides when logging is configured.
"""

from pathlib import Path
import logging
import logging.config

from autolayer.utils.project import get_project_name

from .formatters import JsonFormatter, ColorFormatter
from .filters import CorrelationIdFilter, RedactFilter
from .handlers import (
    get_console_handler,
    get_file_handler,
    get_error_file_handler,
    get_error_console_handler,
)

# Settings type only; get_settings() is never called at import time
from autolayer.config.settings import Settings

STANDARD_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s"


def _writes_files(settings: Settings) -> bool:
    return (not settings.LOG_TO_STDOUT) and bool(settings.LOG_DIR)


def make_dict_config(settings: Settings) -> dict:
    """
    Build the dictConfig mapping using the provided settings.

    The returned mapping includes:
      - formatters: "standard" (ColorFormatter for LOG_FORMAT=text in development,
        plain logging.Formatter otherwise) and "json"
      - filters: "correlation_id", "redact"
      - handlers: console plus file/error_file when writing to LOG_DIR, else error_console
      - loggers: root, autolayer, sqlalchemy.engine
    """
    formatters = {
        "standard": {
            "()": ColorFormatter
            if settings.LOG_FORMAT == "text" and settings.ENV == "development"
            else logging.Formatter,
            "format": STANDARD_FORMAT,
        },
        "json": {
            "()": JsonFormatter,
            "env": settings.ENV,
            "service": get_project_name(),
        },
    }

    filters = {
        "correlation_id": {"()": CorrelationIdFilter},
        "redact": {"()": RedactFilter},
    }

    handlers: dict[str, dict] = {"console": get_console_handler(settings)}

    if _writes_files(settings):
        handlers["file"] = get_file_handler(settings)
        handlers["error_file"] = get_error_file_handler(settings)
    else:
        handlers["error_console"] = get_error_console_handler(settings)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers.keys()),
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            # repository events propagate to the root handlers
            "autolayer": {
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            # SQL echo can contain bound parameter values
            "sqlalchemy.engine": {
                "level": "INFO" if settings.ENABLE_SQL_LOGGING else "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging(settings: Settings) -> None:
    """
    Initialize logging from settings.

    Steps:
      1. Ensure LOG_DIR exists when writing files.
      2. Apply dictConfig(make_dict_config(settings)).
      3. Register a CorrelationIdFilter on the root logger so records emitted
         through handlers added later still carry `correlation_id`.
    """
    if _writes_files(settings):
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(make_dict_config(settings))

    root = logging.getLogger()
    if not any(isinstance(f, CorrelationIdFilter) for f in root.filters):
        root.addFilter(CorrelationIdFilter())


r"""
-------------------------------------------------
Which handlers are active?
-------------------------------------------------
| `LOG_TO_STDOUT` | `LOG_DIR` set  | Active handlers                          |
| --------------- | -------------- | ---------------------------------------- |
| `true`          | doesn't matter | `console` (stdout) + `error_console`     |
| `false`         | no             | `console` (stderr) + `error_console`     |
| `false`         | yes            | `console` + `file` + `error_file`        |

| Handler         | Triggers on             | Output                        |
| --------------- | ----------------------- | ----------------------------- |
| `console`       | All logs `>= LOG_LEVEL` | stdout / stderr               |
| `file`          | All logs `>= LOG_LEVEL` | `<LOG_DIR>/autolayer.log`     |
| `error_file`    | Only logs `>= ERROR`    | `<LOG_DIR>/errors.log`        |
| `error_console` | Only logs `>= ERROR`    | stderr, JSON                  |

-------------------------------------------------
What the repositories log
-------------------------------------------------
| Level     | Event                                   | When                                      |
| --------- | --------------------------------------- | ----------------------------------------- |
| DEBUG     | `repo.<operation>.success`              | every completed operation, `duration_ms`  |
| DEBUG     | `repo.save.committed` / `.flushed`      | autosave, with the number written         |
| INFO      | `repo.validation.*`, `repo.*.not_found` | caller errors, no stack trace             |
| WARNING   | `repo.execute_transaction.rolled_back`  | a transaction scope was rolled back       |
| ERROR     | `storage.unexpected_error`              | non-integrity storage failure, with trace |

Record values are never logged; only ids, keys, counts and timings are.
"""
