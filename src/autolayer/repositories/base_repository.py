"""
Shared core for the generic repositories.

`RepositoryCore` holds everything `Repository` (blocking `Session`) and
`AsyncRepository` (`AsyncSession`) have in common:

  - argument validation
  - statement composition (filter, order, page, include-related, aggregate)
  - the split between SQL predicates (pushed down to the database) and plain
    Python callables (evaluated over the loaded records)
  - untracked-read handling and the per-operation log events

The subclasses only decide how a statement is executed: `session.execute(...)`
or `await session.execute(...)`. No method here touches the database.
"""

import inspect
import logging
import time
from typing import Any, Callable, Generic, Iterable, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select, text
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import RelationshipProperty, selectinload

from autolayer.exceptions.base import (
    EmptySetError,
    EntityNotFoundError,
    InvalidArgumentError,
    NullPrimaryKeyError,
)
from autolayer.validators.argument_validators import (
    ensure_positive_id,
    ensure_predicate,
    ensure_sql,
    ensure_valid_page,
    is_sql_expression,
)
from autolayer.validators.model_validators import (
    get_primary_key_attributes,
    get_primary_key_values,
    identity_argument,
    model_name,
    resolve_column_attribute,
    resolve_relationship_attribute,
)

# Type variable for the model class
ModelType = TypeVar("ModelType")

Predicate = Any  # SQL boolean clause or Callable[[ModelType], bool]
Selector = Any   # mapped column attribute, column expression or attribute name
UpdateAction = Callable[[Any], Any]

# Setup logging
logger = logging.getLogger(__name__)

# aggregate name -> SQL function
AGGREGATES = {
    "max": func.max,
    "min": func.min,
    "sum": func.sum,
    "average": func.avg,
}


class RepositoryCore(Generic[ModelType]):
    """
    Statement composition and validation for one mapped record type.

    Type Parameters:
        ModelType: The SQLAlchemy-mapped class the repository manages.
    """

    def __init__(self, model: Type[ModelType], session):
        """
        Initialize the repository.

        Args:
            model: The mapped class itself (e.g. `WeatherForecast`, not an instance).
            session: A `Session` for `Repository`, an `AsyncSession` for `AsyncRepository`.

        Raises:
            InvalidArgumentError: If model or session is None.
        """
        if model is None:
            raise InvalidArgumentError("Repository model must not be None", fields=["model"])
        if session is None:
            raise InvalidArgumentError("Repository session must not be None", fields=["session"])
        self.model = model
        self.session = session
        self.model_name = model_name(model)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}[{self.model_name}]>"

    # =================================================================================================================
    # Statement builders
    # =================================================================================================================

    def get_query(self) -> Select:
        """
        Return a composable `select(Model)` for queries the repository does not cover.

        Example:
            stmt = repo.get_query().where(WeatherForecast.summary.like("Warm%")).limit(5)
        """
        return select(self.model)

    def _select(self, clause=None, include=None) -> Select:
        stmt = select(self.model)
        if clause is not None:
            stmt = stmt.where(clause)
        if include is not None:
            stmt = stmt.options(selectinload(self._relationship(include)))
        return stmt

    def _split_predicate(self, predicate: Predicate, operation: str, *, sql_only: bool = False):
        """
        Validate a predicate and split it into (sql_clause, python_filter); exactly one is set.
        """
        ensure_predicate(predicate, self.model_name, operation, sql_only=sql_only)
        if is_sql_expression(predicate):
            return predicate, None
        return None, predicate

    def _filter_statement(self, predicate: Predicate, operation: str, include=None):
        clause, python_filter = self._split_predicate(predicate, operation)
        return self._select(clause, include), python_filter

    def _column(self, selector: Selector, operation: str):
        if isinstance(selector, str):
            return resolve_column_attribute(self.model, selector)
        if is_sql_expression(selector):
            return selector
        logger.info("repo.validation.invalid_selector", extra={"model": self.model_name, "operation": operation})
        raise InvalidArgumentError(
            f"Selector for {self.model_name}.{operation} must be a mapped column, a column expression "
            f"or an attribute name, got {type(selector).__name__}",
            fields=["selector"],
        )

    def _relationship(self, include):
        if isinstance(include, str):
            return resolve_relationship_attribute(self.model, include)
        if not isinstance(getattr(include, "property", None), RelationshipProperty):
            raise InvalidArgumentError(
                f"include for {self.model_name} must be a relationship attribute, got {include!r}",
                fields=["include"],
            )
        return include

    def _ordered_statement(self, order_by: Selector, is_ascending: bool, operation: str) -> Select:
        if order_by is None:
            raise InvalidArgumentError(
                f"order_by for {self.model_name}.{operation} must not be None", fields=["order_by"]
            )
        column = self._column(order_by, operation)
        return select(self.model).order_by(column.asc() if is_ascending else column.desc())

    def _paged_statement(self, page_number: int, page_size: int, order_by: Selector | None,
                         is_ascending: bool) -> Select:
        ensure_valid_page(page_number, page_size, self.model_name)
        if order_by is None:
            # stable pages: fall back to the primary key in the requested direction
            columns = [getattr(self.model, name) for name in get_primary_key_attributes(self.model)]
        else:
            columns = [self._column(order_by, "get_paged")]
        ordering = [c.asc() if is_ascending else c.desc() for c in columns]
        return (
            select(self.model)
            .order_by(*ordering)
            .offset((page_number - 1) * page_size)
            .limit(page_size)
        )

    def _count_statement(self, clause=None) -> Select:
        stmt = select(func.count()).select_from(self.model)
        if clause is not None:
            stmt = stmt.where(clause)
        return stmt

    def _exists_statement(self, clause=None) -> Select:
        inner = select(self.model)
        if clause is not None:
            inner = inner.where(clause)
        return select(inner.exists())

    def _aggregate_statement(self, aggregate: str, selector: Selector, predicate: Predicate | None = None) -> Select:
        """
        SELECT <agg>(selector), count(*) FROM model [WHERE predicate]

        The row count is fetched alongside the aggregate so an empty set can be told
        apart from a NULL aggregate.
        """
        operation = f"{aggregate}_where" if predicate is not None else aggregate
        column = self._column(selector, operation)
        stmt = select(AGGREGATES[aggregate](column), func.count()).select_from(self.model)
        if predicate is not None:
            clause, _ = self._split_predicate(predicate, operation, sql_only=True)
            stmt = stmt.where(clause)
        return stmt

    def _aggregate_result(self, aggregate: str, row, started: float):
        value, matched = row
        if not matched:
            logger.info("repo.aggregate.empty_set", extra={"model": self.model_name, "operation": aggregate})
            raise EmptySetError(self.model_name, aggregate)
        self._log_success(aggregate, started, matched=matched)
        return value

    def _raw_query_statement(self, sql: str):
        return select(self.model).from_statement(text(ensure_sql(sql)))

    def _raw_command_statement(self, sql: str):
        return text(ensure_sql(sql))

    # =================================================================================================================
    # Key handling
    # =================================================================================================================

    def _id_key(self, entity_id: Any, operation: str) -> Any:
        ensure_positive_id(entity_id, self.model_name, operation)
        names = get_primary_key_attributes(self.model)
        if len(names) != 1:
            raise InvalidArgumentError(
                f"{self.model_name} has a composite primary key ({', '.join(names)}); use get_by_key()",
                fields=names,
            )
        return entity_id

    def _key_from_values(self, key_values: Sequence[Any]) -> Any:
        names = get_primary_key_attributes(self.model)
        if len(key_values) != len(names):
            raise NullPrimaryKeyError(
                self.model_name,
                fields=names,
                message=f"{self.model_name} primary key has {len(names)} column(s), got {len(key_values)} value(s)",
            )
        missing = [name for name, value in zip(names, key_values) if value is None]
        if missing:
            raise NullPrimaryKeyError(self.model_name, fields=missing)
        return identity_argument(tuple(key_values))

    def _key_of(self, entity: ModelType) -> Any:
        return identity_argument(get_primary_key_values(self.model, entity))

    def _is_attached(self, entity: ModelType) -> bool:
        try:
            state = sa_inspect(entity)
        except NoInspectionAvailable:
            raise InvalidArgumentError(
                f"Expected a mapped {self.model_name} instance, got {type(entity).__name__}"
            ) from None
        return state.persistent and entity in self.session

    def _not_found(self, operation: str, key: Any) -> EntityNotFoundError:
        logger.info(
            f"repo.{operation}.not_found",
            extra={"model": self.model_name, "operation": operation, "key": repr(key)},
        )
        return EntityNotFoundError(self.model_name, key)

    # =================================================================================================================
    # Result handling
    # =================================================================================================================

    def _matches(self, python_filter: Callable[[ModelType], bool], record: ModelType) -> bool:
        verdict = python_filter(record)
        if inspect.isawaitable(verdict):
            # an un-awaited coroutine is truthy and would match every record
            if inspect.iscoroutine(verdict):
                verdict.close()
            logger.info("repo.validation.awaitable_predicate", extra={"model": self.model_name})
            raise InvalidArgumentError(
                f"Predicate for {self.model_name} returned an awaitable; predicates must return a bool",
                fields=["predicate"],
            )
        return bool(verdict)

    def _apply_filter(self, records: Iterable[ModelType],
                      python_filter: Callable[[ModelType], bool] | None) -> list[ModelType]:
        if python_filter is None:
            return list(records)
        return [record for record in records if self._matches(python_filter, record)]

    def _tracked_snapshot(self, as_no_tracking: bool) -> set[int] | None:
        """Identities of the instances the session tracks before an untracked read; None for tracked reads."""
        if not as_no_tracking:
            return None
        return {id(instance) for instance in self.session.identity_map.values()}

    def _untrack(self, records: Iterable[ModelType], tracked_before: set[int] | None) -> None:
        """
        Detach read results from the session so later in-place edits are never flushed.

        Only instances the read itself brought into the session are detached. An
        instance the caller already held as tracked stays attached, as do instances
        with pending changes (modified or scheduled for deletion).
        """
        if tracked_before is None:
            return
        for record in records:
            if id(record) in tracked_before:
                continue
            state = sa_inspect(record)
            if state.persistent and not state.modified and record not in self.session.deleted:
                self.session.expunge(record)

    def _log_success(self, operation: str, started: float, **fields: Any) -> None:
        logger.debug(
            f"repo.{operation}.success",
            extra={
                "model": self.model_name,
                "operation": operation,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                **fields,
            },
        )
