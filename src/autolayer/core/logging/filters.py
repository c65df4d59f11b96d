# src/autolayer/core/logging/filters.py
"""
Logging filters

Correlation id filter and helpers, plus a redaction filter.

A correlation id ties together every log line produced by one logical unit of
work (a request handled by the host application, a batch job, a CLI command).
It lives in a `contextvars.ContextVar`, so it follows the code across `await`
boundaries and into tasks spawned from the current context, and never leaks
between concurrently running tasks.

How it is intended to be used
------------------------------
1. `make_dict_config()` declares `CorrelationIdFilter` and `RedactFilter` and
   attaches them to every handler.
2. The host sets the id at the start of each unit of work:

       token = set_correlation_id(uuid4().hex)
       try:
           await forecasts.add(...)
       finally:
           reset_correlation_id(token)

3. Every record emitted in that context carries `record.correlation_id`;
   formatters render it (or "-" when none is set).
"""

import logging
from logging import LogRecord
import contextvars

_correlation_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(correlation_id: str | None):
    """
    Set the correlation id in the current context.

    Returns:
        token: contextvars.Token to pass to reset_correlation_id(token)
    """
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token) -> None:
    _correlation_id_ctx.reset(token)


def get_correlation_id() -> str | None:
    """
    Return the current context's correlation id, or None if none has been set.
    """
    return _correlation_id_ctx.get()


class CorrelationIdFilter(logging.Filter):
    """
    Guarantees every LogRecord has a `correlation_id` attribute.

    Precedence:
      - an explicit `extra={"correlation_id": ...}` on the logging call
      - the context variable
      - the sentinel "-" so `%(correlation_id)s` format strings never KeyError
    """

    def filter(self, record: LogRecord) -> bool:
        record.correlation_id = (
            getattr(record, "correlation_id", None) or get_correlation_id() or "-"
        )
        return True


class RedactFilter(logging.Filter):
    """
    Masks sensitive values passed through `extra`.

    Matches record attributes whose name equals or ends with one of SENSITIVE
    (so both `password` and `db_password` are masked), and the same keys one
    level down inside dict values such as `extra={"params": {...}}`.
    """

    SENSITIVE = ("password", "secret", "token", "authorization", "api_key", "dsn")
    MASK = "***REDACTED***"

    def _is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(lowered == s or lowered.endswith("_" + s) for s in self.SENSITIVE)

    def filter(self, record: LogRecord) -> bool:
        for key, value in list(record.__dict__.items()):
            if self._is_sensitive(key):
                record.__dict__[key] = self.MASK
            elif isinstance(value, dict):
                record.__dict__[key] = {
                    k: (self.MASK if isinstance(k, str) and self._is_sensitive(k) else v)
                    for k, v in value.items()
                }
        return True


r"""
-------------------------------------------------
Where do correlation ids show up?
-------------------------------------------------
| Where you're logging                         | Has a correlation id?  | Why?                                                 |
| -------------------------------------------- | ---------------------- | ---------------------------------------------------- |
| Repository call inside a unit of work        | Yes                    | Same context as the `set_correlation_id()` call.     |
| Task created with asyncio.create_task there  | Yes                    | Tasks copy the current context when they are created. |
| Import-time / startup code                   | No (renders "-")       | Nothing has set the variable yet.                    |

Testing tip:
```
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "msg", None, None)
    token = set_correlation_id("abc-123")
    CorrelationIdFilter().filter(record)
    assert record.correlation_id == "abc-123"
    reset_correlation_id(token)
```
"""
