"""
Autosave and transaction scopes shared by `Repository` and `AsyncRepository`.

A transaction scope is marked in `session.info`, which AsyncSession proxies to
its underlying Session, so every repository bound to the same session sees it:

  - outside a scope, `save()` commits (and rolls back on failure)
  - inside a scope, `save()` only flushes; the scope commits once at the end
    or rolls back everything on any failure

Scopes do not nest. Entering a second scope on a session that already has one
raises NestedTransactionError without touching the active scope.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from autolayer.exceptions.base import NestedTransactionError, RepositoryError, TransactionFailedError
from autolayer.exceptions.mapper import async_storage_error_handler, storage_error_handler

logger = logging.getLogger(__name__)

SCOPE_KEY = "autolayer.transaction_scope"


def is_transaction_scope_active(session: Session | AsyncSession) -> bool:
    return bool(session.info.get(SCOPE_KEY))


def pending_count(session: Session | AsyncSession) -> int:
    """Number of instances the next flush will write (new + dirty + deleted)."""
    return len(session.new) + len(session.dirty) + len(session.deleted)


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, RepositoryError):
        return exc.message
    return str(exc) or exc.__class__.__name__


# =================================================================================================================
# Autosave
# =================================================================================================================

def save(session: Session, model_name: str) -> int:
    """
    Autosave for the blocking repository.

    Returns:
        int: number of instances written.
    """
    written = pending_count(session)
    in_scope = is_transaction_scope_active(session)
    with storage_error_handler(session, model_name, rollback=not in_scope):
        if in_scope:
            session.flush()
        else:
            session.commit()
    logger.debug(
        "repo.save.flushed" if in_scope else "repo.save.committed",
        extra={"model": model_name, "written": written},
    )
    return written


async def save_async(session: AsyncSession, model_name: str) -> int:
    written = pending_count(session)
    in_scope = is_transaction_scope_active(session)
    async with async_storage_error_handler(session, model_name, rollback=not in_scope):
        if in_scope:
            await session.flush()
        else:
            await session.commit()
    logger.debug(
        "repo.save.flushed" if in_scope else "repo.save.committed",
        extra={"model": model_name, "written": written},
    )
    return written


# =================================================================================================================
# Transaction scopes
# =================================================================================================================

def _enter_scope(session: Session | AsyncSession, model_name: str) -> float:
    if is_transaction_scope_active(session):
        logger.info("repo.execute_transaction.nested", extra={"model": model_name})
        raise NestedTransactionError(model_name)
    session.info[SCOPE_KEY] = True
    return time.perf_counter()


def _log_rollback(model_name: str, exc: BaseException, started: float) -> None:
    logger.warning(
        "repo.execute_transaction.rolled_back",
        extra={
            "model": model_name,
            "error_type": exc.__class__.__name__,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )


@contextmanager
def transaction_scope(session: Session, model_name: str) -> Iterator[Session]:
    """
    Run the body as one unit of work: commit on success, roll back on any failure.

    Raises:
        NestedTransactionError: a scope is already active on `session`.
        TransactionFailedError: the body or the final commit failed; the original
            exception is chained as `__cause__`.
    """
    started = _enter_scope(session, model_name)
    try:
        yield session
        with storage_error_handler(session, model_name, rollback=False):
            session.commit()
    except BaseException as exc:
        try:
            session.rollback()
        except Exception:
            logger.exception("repo.execute_transaction.rollback_failed", extra={"model": model_name})
        _log_rollback(model_name, exc, started)
        if isinstance(exc, Exception):
            raise TransactionFailedError(_failure_message(exc)) from exc
        raise
    else:
        logger.debug(
            "repo.execute_transaction.committed",
            extra={"model": model_name, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
        )
    finally:
        session.info.pop(SCOPE_KEY, None)


@asynccontextmanager
async def async_transaction_scope(session: AsyncSession, model_name: str) -> AsyncIterator[AsyncSession]:
    """
    Async twin of `transaction_scope`.

    Task cancellation rolls the transaction back and re-raises CancelledError itself.
    """
    started = _enter_scope(session, model_name)
    try:
        yield session
        async with async_storage_error_handler(session, model_name, rollback=False):
            await session.commit()
    except asyncio.CancelledError as exc:
        await _rollback_async(session, model_name)
        _log_rollback(model_name, exc, started)
        raise
    except Exception as exc:
        await _rollback_async(session, model_name)
        _log_rollback(model_name, exc, started)
        raise TransactionFailedError(_failure_message(exc)) from exc
    else:
        logger.debug(
            "repo.execute_transaction.committed",
            extra={"model": model_name, "duration_ms": round((time.perf_counter() - started) * 1000, 2)},
        )
    finally:
        session.info.pop(SCOPE_KEY, None)


async def _rollback_async(session: AsyncSession, model_name: str) -> None:
    try:
        await session.rollback()
    except Exception:
        logger.exception("repo.execute_transaction.rollback_failed", extra={"model": model_name})
