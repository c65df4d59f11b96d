"""
Argument checks shared by the sync and async repositories.

Each helper raises the matching repository exception and logs the rejection at
INFO (an expected caller error, so no stack trace).
"""

import inspect
import logging
from typing import Any, Iterable

from sqlalchemy.orm import QueryableAttribute
from sqlalchemy.sql import ClauseElement

from autolayer.exceptions.base import (
    EmptyQueryError,
    InvalidArgumentError,
    NullEntityError,
    NullEntityInCollectionError,
)

logger = logging.getLogger(__name__)


def is_sql_expression(value: Any) -> bool:
    """True for SQL clauses/columns (`Forecast.temperature_c > 20`, `Forecast.summary`), False for plain callables."""
    return isinstance(value, (ClauseElement, QueryableAttribute))


def ensure_positive_id(entity_id: Any, model_name: str, operation: str) -> None:
    # bool is an int subclass but never a valid id
    if isinstance(entity_id, bool) or not isinstance(entity_id, int) or entity_id <= 0:
        logger.info(
            "repo.validation.invalid_id",
            extra={"model": model_name, "operation": operation, "id": repr(entity_id)},
        )
        raise InvalidArgumentError(
            f"{model_name} id must be a positive integer, got {entity_id!r}", fields=["id"]
        )


def ensure_valid_page(page_number: Any, page_size: Any, model_name: str) -> None:
    invalid = [
        name
        for name, value in (("page_number", page_number), ("page_size", page_size))
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0
    ]
    if invalid:
        logger.info(
            "repo.validation.invalid_page",
            extra={"model": model_name, "operation": "get_paged", "invalid_fields": invalid},
        )
        raise InvalidArgumentError(
            f"Page number and page size must be positive integers "
            f"(page_number={page_number!r}, page_size={page_size!r})",
            fields=invalid,
        )


def ensure_entity(entity: Any, model_name: str, operation: str) -> None:
    if entity is None:
        logger.info("repo.validation.null_entity", extra={"model": model_name, "operation": operation})
        raise NullEntityError(model_name)


def ensure_entities(entities: Iterable[Any] | None, model_name: str, operation: str, *,
                    allow_empty: bool = True) -> list[Any]:
    """
    Materialize `entities` once and check it.

    Returns:
        The members as a list (generators are consumed exactly once).
    """
    if entities is None:
        logger.info("repo.validation.null_collection", extra={"model": model_name, "operation": operation})
        raise NullEntityInCollectionError(model_name, f"Collection of {model_name} must not be None")

    members = list(entities)
    if not members and not allow_empty:
        logger.info("repo.validation.empty_collection", extra={"model": model_name, "operation": operation})
        raise NullEntityInCollectionError(model_name, f"Collection of {model_name} must not be empty")

    null_positions = [index for index, member in enumerate(members) if member is None]
    if null_positions:
        logger.info(
            "repo.validation.null_member",
            extra={"model": model_name, "operation": operation, "positions": null_positions},
        )
        raise NullEntityInCollectionError(
            model_name,
            f"Collection of {model_name} contains None at position(s): "
            f"{', '.join(str(p) for p in null_positions)}",
        )
    return members


def ensure_predicate(predicate: Any, model_name: str, operation: str, *, sql_only: bool = False) -> None:
    """
    A predicate is a SQLAlchemy boolean clause or, unless `sql_only`, a plain (non-async) callable record -> bool.
    """
    if predicate is None:
        logger.info("repo.validation.null_predicate", extra={"model": model_name, "operation": operation})
        raise InvalidArgumentError(f"Predicate for {model_name}.{operation} must not be None", fields=["predicate"])

    if is_sql_expression(predicate):
        return

    if sql_only or not callable(predicate):
        logger.info("repo.validation.invalid_predicate", extra={"model": model_name, "operation": operation})
        expected = "a SQL expression" if sql_only else "a SQL expression or a callable"
        raise InvalidArgumentError(
            f"Predicate for {model_name}.{operation} must be {expected}, got {type(predicate).__name__}",
            fields=["predicate"],
        )

    if inspect.iscoroutinefunction(predicate):
        # the coroutine it returns is always truthy, so every record would match
        logger.info("repo.validation.async_predicate", extra={"model": model_name, "operation": operation})
        raise InvalidArgumentError(
            f"Predicate for {model_name}.{operation} must be a plain function, not a coroutine function",
            fields=["predicate"],
        )


def ensure_action(action: Any, model_name: str, operation: str) -> None:
    if action is None or not callable(action):
        logger.info("repo.validation.invalid_action", extra={"model": model_name, "operation": operation})
        raise InvalidArgumentError(
            f"Action for {model_name}.{operation} must be a callable", fields=["action"]
        )


def ensure_sql(sql: Any) -> str:
    if sql is None or not isinstance(sql, str) or not sql.strip():
        logger.info("repo.validation.empty_query", extra={"operation": "execute_sql_raw"})
        raise EmptyQueryError()
    return sql
