"""
Generic repository over a blocking `Session`.

Same method names and semantics as `AsyncRepository`; statements come from the
shared `RepositoryCore` and are executed directly on the session. Nothing here
runs an event loop.
"""

import inspect
import time
from typing import Any, Callable, Iterable, Type

from sqlalchemy.orm import Session

from autolayer.db.transaction import is_transaction_scope_active, save, transaction_scope
from autolayer.exceptions.base import InvalidArgumentError
from autolayer.exceptions.mapper import storage_error_handler
from autolayer.repositories.base_repository import (
    ModelType,
    Predicate,
    RepositoryCore,
    Selector,
    UpdateAction,
)
from autolayer.validators.argument_validators import ensure_action, ensure_entities, ensure_entity
from autolayer.validators.model_validators import copy_column_values


class Repository(RepositoryCore[ModelType]):
    """
    Blocking CRUD, query, aggregate, raw-SQL and transaction operations for one mapped class.
    """

    session: Session

    def __init__(self, model: Type[ModelType], session: Session):
        super().__init__(model, session)

    # =================================================================================================================
    # Execution helpers
    # =================================================================================================================

    def _error_handler(self):
        return storage_error_handler(
            self.session, self.model_name, rollback=not is_transaction_scope_active(self.session)
        )

    def _execute(self, stmt, params: dict[str, Any] | None = None):
        with self._error_handler():
            return self.session.execute(stmt, params)

    def _fetch(self, stmt, as_no_tracking: bool = False) -> list[ModelType]:
        tracked_before = self._tracked_snapshot(as_no_tracking)
        records = list(self._execute(stmt).scalars().all())
        self._untrack(records, tracked_before)
        return records

    def _scalar(self, stmt):
        return self._execute(stmt).scalar_one()

    def _get(self, key: Any) -> ModelType | None:
        with self._error_handler():
            return self.session.get(self.model, key)

    def _load(self, predicate: Predicate, operation: str, as_no_tracking: bool,
              include=None, first_only: bool = False) -> list[ModelType]:
        stmt, python_filter = self._filter_statement(predicate, operation, include)
        if first_only and python_filter is None:
            stmt = stmt.limit(1)
        records = self._fetch(stmt, as_no_tracking)
        return self._apply_filter(records, python_filter)

    def _save(self) -> int:
        return save(self.session, self.model_name)

    # =================================================================================================================
    # Single-record reads
    # =================================================================================================================

    def get_by_id(self, entity_id: int) -> ModelType | None:
        """
        Get a record by its integer primary key, or None.

        Raises:
            InvalidArgumentError: If the id is not a positive integer.
        """
        key = self._id_key(entity_id, "get_by_id")
        started = time.perf_counter()
        entity = self._get(key)
        self._log_success("get_by_id", started, id=entity_id, found=entity is not None)
        return entity

    def get_by_key(self, *key_values: Any) -> ModelType | None:
        key = self._key_from_values(key_values)
        started = time.perf_counter()
        entity = self._get(key)
        self._log_success("get_by_key", started, found=entity is not None)
        return entity

    def get_first(self, predicate: Predicate, as_no_tracking: bool = True) -> ModelType | None:
        started = time.perf_counter()
        matches = self._load(predicate, "get_first", as_no_tracking, first_only=True)
        self._log_success("get_first", started, found=bool(matches))
        return matches[0] if matches else None

    def get_first_with_related(self, predicate: Predicate, include, as_no_tracking: bool = True) -> ModelType | None:
        started = time.perf_counter()
        matches = self._load(predicate, "get_first_with_related", as_no_tracking, include, first_only=True)
        self._log_success("get_first_with_related", started, found=bool(matches))
        return matches[0] if matches else None

    # =================================================================================================================
    # Collection reads
    # =================================================================================================================

    def get_all(self, as_no_tracking: bool = True) -> list[ModelType]:
        started = time.perf_counter()
        records = self._fetch(self._select(), as_no_tracking)
        self._log_success("get_all", started, count=len(records))
        return records

    def get_where(self, predicate: Predicate, as_no_tracking: bool = True) -> list[ModelType]:
        started = time.perf_counter()
        matches = self._load(predicate, "get_where", as_no_tracking)
        self._log_success("get_where", started, count=len(matches))
        return matches

    def get_with_related(self, predicate: Predicate, include, as_no_tracking: bool = True) -> list[ModelType]:
        started = time.perf_counter()
        matches = self._load(predicate, "get_with_related", as_no_tracking, include)
        self._log_success("get_with_related", started, count=len(matches))
        return matches

    def get_ordered(self, order_by: Selector, is_ascending: bool = True, as_no_tracking: bool = True) -> list[ModelType]:
        stmt = self._ordered_statement(order_by, is_ascending, "get_ordered")
        started = time.perf_counter()
        records = self._fetch(stmt, as_no_tracking)
        self._log_success("get_ordered", started, count=len(records))
        return records

    def get_paged(self, page_number: int, page_size: int, order_by: Selector | None = None,
                  is_ascending: bool = True, as_no_tracking: bool = True) -> list[ModelType]:
        stmt = self._paged_statement(page_number, page_size, order_by, is_ascending)
        started = time.perf_counter()
        records = self._fetch(stmt, as_no_tracking)
        self._log_success("get_paged", started, page_number=page_number, page_size=page_size, count=len(records))
        return records

    # =================================================================================================================
    # Existence and counting
    # =================================================================================================================

    def exists(self, predicate: Predicate) -> bool:
        clause, python_filter = self._split_predicate(predicate, "exists")
        if python_filter is None:
            return bool(self._scalar(self._exists_statement(clause)))
        records = self._fetch(self._select(), True)
        return any(self._matches(python_filter, record) for record in records)

    def is_empty(self) -> bool:
        return not self._scalar(self._exists_statement())

    def count(self) -> int:
        return self._scalar(self._count_statement())

    def count_where(self, predicate: Predicate) -> int:
        clause, python_filter = self._split_predicate(predicate, "count_where")
        if python_filter is None:
            return self._scalar(self._count_statement(clause))
        return len(self._load(predicate, "count_where", True))

    # =================================================================================================================
    # Aggregates
    # =================================================================================================================

    def _aggregate(self, aggregate: str, selector: Selector, predicate: Predicate | None = None):
        stmt = self._aggregate_statement(aggregate, selector, predicate)
        started = time.perf_counter()
        row = self._execute(stmt).one()
        return self._aggregate_result(aggregate, row, started)

    def max(self, selector: Selector):
        return self._aggregate("max", selector)

    def max_where(self, predicate: Predicate, selector: Selector):
        return self._aggregate("max", selector, predicate)

    def min(self, selector: Selector):
        return self._aggregate("min", selector)

    def min_where(self, predicate: Predicate, selector: Selector):
        return self._aggregate("min", selector, predicate)

    def sum(self, selector: Selector):
        return self._aggregate("sum", selector)

    def sum_where(self, predicate: Predicate, selector: Selector):
        return self._aggregate("sum", selector, predicate)

    def average(self, selector: Selector):
        return self._aggregate("average", selector)

    def average_where(self, predicate: Predicate, selector: Selector):
        return self._aggregate("average", selector, predicate)

    # =================================================================================================================
    # Create
    # =================================================================================================================

    def add(self, entity: ModelType) -> ModelType:
        ensure_entity(entity, self.model_name, "add")
        started = time.perf_counter()
        self.session.add(entity)
        self._save()
        self._log_success("add", started)
        return entity

    def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        members = ensure_entities(entities, self.model_name, "add_range")
        started = time.perf_counter()
        self.session.add_all(members)
        self._save()
        self._log_success("add_range", started, count=len(members))
        return members

    # =================================================================================================================
    # Update
    # =================================================================================================================

    def _resolve_stored(self, entity: ModelType, operation: str) -> ModelType:
        key = self._key_of(entity)
        existing = self._get(key)
        if existing is None:
            raise self._not_found(operation, key)
        return existing

    def update(self, entity: ModelType) -> ModelType:
        """
        Copy `entity`'s column values onto the stored record with the same primary key and autosave.

        Raises:
            NullEntityError, NullPrimaryKeyError, EntityNotFoundError
        """
        ensure_entity(entity, self.model_name, "update")
        started = time.perf_counter()
        existing = self._resolve_stored(entity, "update")
        if existing is not entity:
            copy_column_values(self.model, existing, entity)
        self._save()
        self._log_success("update", started)
        return existing

    def update_by_id(self, entity_id: int, update_action: UpdateAction) -> ModelType:
        key = self._id_key(entity_id, "update_by_id")
        ensure_action(update_action, self.model_name, "update_by_id")
        started = time.perf_counter()
        existing = self._get(key)
        if existing is None:
            raise self._not_found("update_by_id", entity_id)
        update_action(existing)
        self._save()
        self._log_success("update_by_id", started, id=entity_id)
        return existing

    def update_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        members = ensure_entities(entities, self.model_name, "update_range", allow_empty=False)
        started = time.perf_counter()
        stored = [self._resolve_stored(member, "update_range") for member in members]
        for existing, member in zip(stored, members):
            if existing is not member:
                copy_column_values(self.model, existing, member)
        self._save()
        self._log_success("update_range", started, count=len(stored))
        return stored

    def update_where(self, predicate: Predicate, update_action: UpdateAction) -> int:
        ensure_action(update_action, self.model_name, "update_where")
        started = time.perf_counter()
        matches = self._load(predicate, "update_where", as_no_tracking=False)
        for record in matches:
            update_action(record)
        self._save()
        self._log_success("update_where", started, count=len(matches))
        return len(matches)

    # =================================================================================================================
    # Delete
    # =================================================================================================================

    def _deletable(self, entity: ModelType, operation: str) -> ModelType:
        if self._is_attached(entity):
            return entity
        return self._resolve_stored(entity, operation)

    def remove(self, entity: ModelType) -> None:
        ensure_entity(entity, self.model_name, "remove")
        started = time.perf_counter()
        self.session.delete(self._deletable(entity, "remove"))
        self._save()
        self._log_success("remove", started)

    def remove_by_id(self, entity_id: int) -> None:
        key = self._id_key(entity_id, "remove_by_id")
        started = time.perf_counter()
        existing = self._get(key)
        if existing is None:
            raise self._not_found("remove_by_id", entity_id)
        self.session.delete(existing)
        self._save()
        self._log_success("remove_by_id", started, id=entity_id)

    def remove_range(self, entities: Iterable[ModelType]) -> int:
        members = ensure_entities(entities, self.model_name, "remove_range")
        started = time.perf_counter()
        targets = [self._deletable(member, "remove_range") for member in members]
        for target in targets:
            self.session.delete(target)
        self._save()
        self._log_success("remove_range", started, count=len(targets))
        return len(targets)

    def remove_where(self, predicate: Predicate) -> int:
        started = time.perf_counter()
        matches = self._load(predicate, "remove_where", as_no_tracking=False)
        for record in matches:
            self.session.delete(record)
        self._save()
        self._log_success("remove_where", started, count=len(matches))
        return len(matches)

    # =================================================================================================================
    # Transactions
    # =================================================================================================================

    def execute_transaction(self, action: Callable[[], Any]) -> Any:
        """
        Run `action` as one unit of work: begin, run, autosave, commit; roll back on any failure.

        Raises:
            InvalidArgumentError: If action is not a plain callable (use AsyncRepository for coroutines).
            NestedTransactionError: A transaction scope is already active on this session.
            TransactionFailedError: `action` or the final save failed; chained to the original error.
        """
        ensure_action(action, self.model_name, "execute_transaction")
        if inspect.iscoroutinefunction(action):
            raise InvalidArgumentError(
                f"{self.model_name}.execute_transaction on a blocking session needs a plain callable",
                fields=["action"],
            )
        with transaction_scope(self.session, self.model_name):
            result = action()
            self._save()
        return result

    # =================================================================================================================
    # Raw SQL
    # =================================================================================================================

    def execute_sql_raw(self, sql: str, params: dict[str, Any] | None = None) -> list[ModelType]:
        stmt = self._raw_query_statement(sql)
        started = time.perf_counter()
        records = list(self._execute(stmt, params).scalars().all())
        self._log_success("execute_sql_raw", started, count=len(records))
        return records

    def execute_sql_raw_command(self, sql: str, params: dict[str, Any] | None = None) -> int:
        stmt = self._raw_command_statement(sql)
        started = time.perf_counter()
        affected = self._execute(stmt, params).rowcount
        self._save()
        self._log_success("execute_sql_raw_command", started, affected=affected)
        return affected


__all__ = ["Repository"]
