"""
Translate SQLAlchemy storage failures into repository-level exceptions.

Repositories wrap their autosave (flush/commit) in `storage_error_handler` /
`async_storage_error_handler`. Inside the handler:

  - RepositoryError subclasses pass through unchanged.
  - IntegrityError is classified (PostgreSQL SQLSTATE first, then message text
    for SQLite/MySQL) and re-raised as DuplicateError or ConstraintViolationError.
  - Any other SQLAlchemyError is re-raised as StorageError.
  - The original exception is always chained (`raise ... from exc`).
  - When `rollback=True` the session is rolled back first so it can be reused.

asyncio.CancelledError is a BaseException and is never intercepted here.
"""

import re
import logging
from contextlib import asynccontextmanager, contextmanager
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from .base import (
    ConstraintViolationError,
    DuplicateError,
    RepositoryError,
    StorageError,
)

logger = logging.getLogger(__name__)


# =================================================================================================================
# Classification
# =================================================================================================================

class ConstraintKind(str, Enum):
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    UNKNOWN = "unknown"


# https://www.postgresql.org/docs/current/errcodes-appendix.html
SQLSTATE_TO_KIND = {
    "23505": ConstraintKind.UNIQUE,
    "23502": ConstraintKind.NOT_NULL,
    "23503": ConstraintKind.FOREIGN_KEY,
    "23514": ConstraintKind.CHECK,
}

_MESSAGE_KEYWORDS = (
    (ConstraintKind.UNIQUE, ("unique constraint", "unique failed", "unique violation", "duplicate")),
    (ConstraintKind.NOT_NULL, ("not null constraint", "not null", "null value in column")),
    (ConstraintKind.FOREIGN_KEY, ("foreign key constraint", "foreign key", "is not present in table")),
    (ConstraintKind.CHECK, ("check constraint", "check failed")),
)


def _sqlstate(orig) -> str | None:
    # psycopg2 exposes `pgcode`, psycopg 3 and asyncpg expose `sqlstate`
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _constraint_name(orig) -> str | None:
    diag = getattr(orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name
    return getattr(orig, "constraint_name", None)


def classify_integrity_error(exc: IntegrityError) -> tuple[ConstraintKind, str | None]:
    """
    Classify an IntegrityError.

    Returns:
        (ConstraintKind, constraint name if the driver reported one)
    """
    orig = exc.orig
    code = _sqlstate(orig)
    if code:
        kind = SQLSTATE_TO_KIND.get(code, ConstraintKind.UNKNOWN)
        logger.debug("storage.integrity.sqlstate", extra={"sqlstate": code, "kind": kind.value})
        return kind, _constraint_name(orig)

    normalized = str(orig if orig is not None else exc).lower()
    for kind, keywords in _MESSAGE_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return kind, None

    logger.warning("storage.integrity.unclassified", extra={"message_snippet": normalized[:200]})
    return ConstraintKind.UNKNOWN, None


def extract_columns(exc: IntegrityError) -> list[str] | None:
    """
    Best-effort extraction of the column names involved in an integrity failure.

    Understands:
      - Postgres: 'null value in column "name"' and 'Key (a, b)=(...) already exists'
      - SQLite:   'UNIQUE constraint failed: table.a, table.b' (same for NOT NULL)
    """
    msg = str(exc.orig if exc.orig is not None else exc)

    m = re.search(r'null value in column "(?P<col>[^"]+)"', msg, flags=re.IGNORECASE)
    if m:
        return [m.group("col")]

    m = re.search(r"key \((?P<cols>[^)]+)\)=", msg, flags=re.IGNORECASE)
    if m:
        return [c.strip().strip('"') for c in m.group("cols").split(",")]

    m = re.search(r"(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>.+)$", msg, flags=re.IGNORECASE | re.MULTILINE)
    if m:
        return [c.split(".")[-1].strip() for c in re.split(r",\s*", m.group("cols"))]

    return None


# =================================================================================================================
# Mapping to repository exceptions
# =================================================================================================================

def translate_storage_error(exc: SQLAlchemyError, model_name: str) -> RepositoryError:
    """Return the repository-level exception that represents `exc` (the caller raises it)."""
    if not isinstance(exc, IntegrityError):
        return StorageError(f"Storage operation on {model_name} failed: {exc.__class__.__name__}")

    kind, constraint = classify_integrity_error(exc)
    columns = extract_columns(exc)
    column_part = f" for field(s): {', '.join(columns)}" if columns else ""

    if kind is ConstraintKind.UNIQUE:
        logger.info("storage.duplicate", extra={"model": model_name, "fields": columns, "constraint": constraint})
        return DuplicateError(f"{model_name} already exists{column_part}", fields=columns, constraint=constraint)

    if kind is ConstraintKind.NOT_NULL:
        return ConstraintViolationError(
            f"Missing required value{column_part} for {model_name}", fields=columns, constraint=constraint
        )

    if kind is ConstraintKind.FOREIGN_KEY:
        return ConstraintViolationError(
            f"{model_name} references a record that does not exist{column_part}", fields=columns, constraint=constraint
        )

    if kind is ConstraintKind.CHECK:
        return ConstraintViolationError(
            f"{model_name} violates a check constraint", fields=columns, constraint=constraint
        )

    return StorageError(f"{model_name} database integrity error", constraint=constraint)


def _log_unexpected(exc: Exception, model_name: str) -> None:
    if isinstance(exc, IntegrityError):
        return
    logger.exception("storage.unexpected_error", extra={"model": model_name})


# =================================================================================================================
# Context managers used around autosave
# =================================================================================================================

@contextmanager
def storage_error_handler(session: Session, model_name: str, *, rollback: bool = True):
    """
    Usage:
        with storage_error_handler(self.session, self.model_name, rollback=not in_scope):
            self.session.commit()
    """
    try:
        yield
    except RepositoryError:
        raise
    except Exception as exc:
        if rollback:
            try:
                session.rollback()
            except Exception:
                logger.exception("storage.rollback_failed", extra={"model": model_name})
        if not isinstance(exc, SQLAlchemyError):
            raise
        _log_unexpected(exc, model_name)
        raise translate_storage_error(exc, model_name) from exc


@asynccontextmanager
async def async_storage_error_handler(session: AsyncSession, model_name: str, *, rollback: bool = True):
    """
    Async twin of `storage_error_handler`:
        async with async_storage_error_handler(self.session, self.model_name, rollback=not in_scope):
            await self.session.commit()
    """
    try:
        yield
    except RepositoryError:
        raise
    except Exception as exc:
        if rollback:
            try:
                await session.rollback()
            except Exception:
                logger.exception("storage.rollback_failed", extra={"model": model_name})
        if not isinstance(exc, SQLAlchemyError):
            raise
        _log_unexpected(exc, model_name)
        raise translate_storage_error(exc, model_name) from exc
