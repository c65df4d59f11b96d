"""
Generic repository over an `AsyncSession`.

One `AsyncRepository` is created per mapped class:

    async with session_factory() as session:
        forecasts = AsyncRepository(WeatherForecast, session)
        await forecasts.add(WeatherForecast(date=..., temperature_c=21))
        warm = await forecasts.get_where(WeatherForecast.temperature_c > 20)

Every method is a coroutine that suspends only on database I/O. Task
cancellation surfaces as `asyncio.CancelledError` and is never converted.
"""

import inspect
import time
from typing import Any, Awaitable, Callable, Iterable, Type

from sqlalchemy.ext.asyncio import AsyncSession

from autolayer.db.transaction import async_transaction_scope, is_transaction_scope_active, save_async
from autolayer.exceptions.mapper import async_storage_error_handler
from autolayer.repositories.base_repository import (
    ModelType,
    Predicate,
    RepositoryCore,
    Selector,
    UpdateAction,
)
from autolayer.validators.argument_validators import ensure_action, ensure_entities, ensure_entity
from autolayer.validators.model_validators import copy_column_values


class AsyncRepository(RepositoryCore[ModelType]):
    """
    Async CRUD, query, aggregate, raw-SQL and transaction operations for one mapped class.

    Type Parameters:
        ModelType: The SQLAlchemy-mapped class this repository manages.
    """

    session: AsyncSession

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        super().__init__(model, session)

    # =================================================================================================================
    # Execution helpers
    # =================================================================================================================

    def _error_handler(self):
        # outside a transaction scope a failed statement leaves the session rolled back and reusable
        return async_storage_error_handler(
            self.session, self.model_name, rollback=not is_transaction_scope_active(self.session)
        )

    async def _execute(self, stmt, params: dict[str, Any] | None = None):
        async with self._error_handler():
            return await self.session.execute(stmt, params)

    async def _fetch(self, stmt, as_no_tracking: bool = False) -> list[ModelType]:
        tracked_before = self._tracked_snapshot(as_no_tracking)
        result = await self._execute(stmt)
        records = list(result.scalars().all())
        self._untrack(records, tracked_before)
        return records

    async def _scalar(self, stmt):
        result = await self._execute(stmt)
        return result.scalar_one()

    async def _get(self, key: Any) -> ModelType | None:
        async with self._error_handler():
            return await self.session.get(self.model, key)

    async def _load(self, predicate: Predicate, operation: str, as_no_tracking: bool,
                    include=None, first_only: bool = False) -> list[ModelType]:
        stmt, python_filter = self._filter_statement(predicate, operation, include)
        if first_only and python_filter is None:
            stmt = stmt.limit(1)
        records = await self._fetch(stmt, as_no_tracking)
        return self._apply_filter(records, python_filter)

    @staticmethod
    async def _run(action: Callable[..., Any], *args: Any) -> Any:
        # accepts plain callables and coroutine functions alike
        result = action(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _save(self) -> int:
        return await save_async(self.session, self.model_name)

    # =================================================================================================================
    # Single-record reads
    # =================================================================================================================

    async def get_by_id(self, entity_id: int) -> ModelType | None:
        """
        Get a record by its integer primary key.

        Args:
            entity_id: A positive integer id.

        Returns:
            The record if found, otherwise None.

        Raises:
            InvalidArgumentError: If the id is not a positive integer, or the model has a composite key.
        """
        key = self._id_key(entity_id, "get_by_id")
        started = time.perf_counter()
        entity = await self._get(key)
        self._log_success("get_by_id", started, id=entity_id, found=entity is not None)
        return entity

    async def get_by_key(self, *key_values: Any) -> ModelType | None:
        """
        Get a record by its primary-key value(s), one per key column in mapper order.

        Raises:
            NullPrimaryKeyError: If a value is None or the number of values does not match the key.
        """
        key = self._key_from_values(key_values)
        started = time.perf_counter()
        entity = await self._get(key)
        self._log_success("get_by_key", started, found=entity is not None)
        return entity

    async def get_first(self, predicate: Predicate, as_no_tracking: bool = True) -> ModelType | None:
        started = time.perf_counter()
        matches = await self._load(predicate, "get_first", as_no_tracking, first_only=True)
        self._log_success("get_first", started, found=bool(matches))
        return matches[0] if matches else None

    async def get_first_with_related(self, predicate: Predicate, include, as_no_tracking: bool = True) -> ModelType | None:
        """
        Like `get_first`, with the `include` relationship (e.g. `Station.forecasts`) loaded eagerly.
        """
        started = time.perf_counter()
        matches = await self._load(predicate, "get_first_with_related", as_no_tracking, include, first_only=True)
        self._log_success("get_first_with_related", started, found=bool(matches))
        return matches[0] if matches else None

    # =================================================================================================================
    # Collection reads
    # =================================================================================================================

    async def get_all(self, as_no_tracking: bool = True) -> list[ModelType]:
        started = time.perf_counter()
        records = await self._fetch(self._select(), as_no_tracking)
        self._log_success("get_all", started, count=len(records))
        return records

    async def get_where(self, predicate: Predicate, as_no_tracking: bool = True) -> list[ModelType]:
        """
        Return every record matching `predicate`.

        Args:
            predicate: A SQL clause (`WeatherForecast.temperature_c > 20`) evaluated by the
                database, or a callable `record -> bool` evaluated over all loaded records.
            as_no_tracking: Detach the results from the session (default).
        """
        started = time.perf_counter()
        matches = await self._load(predicate, "get_where", as_no_tracking)
        self._log_success("get_where", started, count=len(matches))
        return matches

    async def get_with_related(self, predicate: Predicate, include, as_no_tracking: bool = True) -> list[ModelType]:
        started = time.perf_counter()
        matches = await self._load(predicate, "get_with_related", as_no_tracking, include)
        self._log_success("get_with_related", started, count=len(matches))
        return matches

    async def get_ordered(self, order_by: Selector, is_ascending: bool = True,
                          as_no_tracking: bool = True) -> list[ModelType]:
        stmt = self._ordered_statement(order_by, is_ascending, "get_ordered")
        started = time.perf_counter()
        records = await self._fetch(stmt, as_no_tracking)
        self._log_success("get_ordered", started, count=len(records))
        return records

    async def get_paged(self, page_number: int, page_size: int, order_by: Selector | None = None,
                        is_ascending: bool = True, as_no_tracking: bool = True) -> list[ModelType]:
        """
        Return page `page_number` (1-based) of `page_size` records.

        Without `order_by` the pages follow the primary key in the requested direction.

        Raises:
            InvalidArgumentError: If page_number or page_size is not a positive integer.
        """
        stmt = self._paged_statement(page_number, page_size, order_by, is_ascending)
        started = time.perf_counter()
        records = await self._fetch(stmt, as_no_tracking)
        self._log_success("get_paged", started, page_number=page_number, page_size=page_size, count=len(records))
        return records

    # =================================================================================================================
    # Existence and counting
    # =================================================================================================================

    async def exists(self, predicate: Predicate) -> bool:
        clause, python_filter = self._split_predicate(predicate, "exists")
        if python_filter is None:
            return bool(await self._scalar(self._exists_statement(clause)))
        records = await self._fetch(self._select(), True)
        return any(self._matches(python_filter, record) for record in records)

    async def is_empty(self) -> bool:
        """True if the table holds no record at all."""
        return not await self._scalar(self._exists_statement())

    async def count(self) -> int:
        return await self._scalar(self._count_statement())

    async def count_where(self, predicate: Predicate) -> int:
        clause, python_filter = self._split_predicate(predicate, "count_where")
        if python_filter is None:
            return await self._scalar(self._count_statement(clause))
        return len(await self._load(predicate, "count_where", True))

    # =================================================================================================================
    # Aggregates
    # =================================================================================================================

    async def _aggregate(self, aggregate: str, selector: Selector, predicate: Predicate | None = None):
        stmt = self._aggregate_statement(aggregate, selector, predicate)
        started = time.perf_counter()
        row = (await self._execute(stmt)).one()
        return self._aggregate_result(aggregate, row, started)

    async def max(self, selector: Selector):
        """
        Largest value of `selector` over all records.

        Raises:
            EmptySetError: If there are no records.
        """
        return await self._aggregate("max", selector)

    async def max_where(self, predicate: Predicate, selector: Selector):
        return await self._aggregate("max", selector, predicate)

    async def min(self, selector: Selector):
        return await self._aggregate("min", selector)

    async def min_where(self, predicate: Predicate, selector: Selector):
        return await self._aggregate("min", selector, predicate)

    async def sum(self, selector: Selector):
        return await self._aggregate("sum", selector)

    async def sum_where(self, predicate: Predicate, selector: Selector):
        return await self._aggregate("sum", selector, predicate)

    async def average(self, selector: Selector):
        return await self._aggregate("average", selector)

    async def average_where(self, predicate: Predicate, selector: Selector):
        return await self._aggregate("average", selector, predicate)

    # =================================================================================================================
    # Create
    # =================================================================================================================

    async def add(self, entity: ModelType) -> ModelType:
        """
        Persist a new record and autosave.

        Raises:
            NullEntityError: If entity is None.
            DuplicateError / ConstraintViolationError / StorageError: If the write is rejected.
        """
        ensure_entity(entity, self.model_name, "add")
        started = time.perf_counter()
        self.session.add(entity)
        await self._save()
        self._log_success("add", started)
        return entity

    async def add_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        members = ensure_entities(entities, self.model_name, "add_range")
        started = time.perf_counter()
        self.session.add_all(members)
        await self._save()
        self._log_success("add_range", started, count=len(members))
        return members

    # =================================================================================================================
    # Update
    # =================================================================================================================

    async def _resolve_stored(self, entity: ModelType, operation: str) -> ModelType:
        key = self._key_of(entity)
        existing = await self._get(key)
        if existing is None:
            raise self._not_found(operation, key)
        return existing

    async def update(self, entity: ModelType) -> ModelType:
        """
        Overwrite the stored record that has `entity`'s primary key with `entity`'s column values.

        Returns:
            The stored (session-attached) record.

        Raises:
            NullEntityError: If entity is None.
            NullPrimaryKeyError: If the model has no primary key or entity's key value is None.
            EntityNotFoundError: If no stored record has that key.
        """
        ensure_entity(entity, self.model_name, "update")
        started = time.perf_counter()
        existing = await self._resolve_stored(entity, "update")
        if existing is not entity:
            copy_column_values(self.model, existing, entity)
        await self._save()
        self._log_success("update", started)
        return existing

    async def update_by_id(self, entity_id: int, update_action: UpdateAction) -> ModelType:
        """
        Load a record by id, apply `update_action(record)` in place and autosave.

        `update_action` may be a plain function or a coroutine function.

        Raises:
            InvalidArgumentError: If the id is not a positive integer or the action is not callable.
            EntityNotFoundError: If no record has that id (nothing is written).
        """
        key = self._id_key(entity_id, "update_by_id")
        ensure_action(update_action, self.model_name, "update_by_id")
        started = time.perf_counter()
        existing = await self._get(key)
        if existing is None:
            raise self._not_found("update_by_id", entity_id)
        await self._run(update_action, existing)
        await self._save()
        self._log_success("update_by_id", started, id=entity_id)
        return existing

    async def update_range(self, entities: Iterable[ModelType]) -> list[ModelType]:
        """
        `update` for each member with a single autosave.

        Every key is resolved before any value is copied, so a missing member leaves the
        session untouched.
        """
        members = ensure_entities(entities, self.model_name, "update_range", allow_empty=False)
        started = time.perf_counter()
        stored = [await self._resolve_stored(member, "update_range") for member in members]
        for existing, member in zip(stored, members):
            if existing is not member:
                copy_column_values(self.model, existing, member)
        await self._save()
        self._log_success("update_range", started, count=len(stored))
        return stored

    async def update_where(self, predicate: Predicate, update_action: UpdateAction) -> int:
        """
        Apply `update_action` to every matching record with a single autosave.

        Returns:
            int: Number of records the action was applied to.
        """
        ensure_action(update_action, self.model_name, "update_where")
        started = time.perf_counter()
        matches = await self._load(predicate, "update_where", as_no_tracking=False)
        for record in matches:
            await self._run(update_action, record)
        await self._save()
        self._log_success("update_where", started, count=len(matches))
        return len(matches)

    # =================================================================================================================
    # Delete
    # =================================================================================================================

    async def _deletable(self, entity: ModelType, operation: str) -> ModelType:
        # detached or transient instances are resolved to the stored record by primary key
        if self._is_attached(entity):
            return entity
        return await self._resolve_stored(entity, operation)

    async def remove(self, entity: ModelType) -> None:
        """
        Delete a record and autosave.

        Raises:
            NullEntityError: If entity is None.
            NullPrimaryKeyError: If a detached entity has no resolvable key.
            EntityNotFoundError: If no stored record has entity's key.
        """
        ensure_entity(entity, self.model_name, "remove")
        started = time.perf_counter()
        target = await self._deletable(entity, "remove")
        await self.session.delete(target)
        await self._save()
        self._log_success("remove", started)

    async def remove_by_id(self, entity_id: int) -> None:
        key = self._id_key(entity_id, "remove_by_id")
        started = time.perf_counter()
        existing = await self._get(key)
        if existing is None:
            raise self._not_found("remove_by_id", entity_id)
        await self.session.delete(existing)
        await self._save()
        self._log_success("remove_by_id", started, id=entity_id)

    async def remove_range(self, entities: Iterable[ModelType]) -> int:
        members = ensure_entities(entities, self.model_name, "remove_range")
        started = time.perf_counter()
        targets = [await self._deletable(member, "remove_range") for member in members]
        for target in targets:
            await self.session.delete(target)
        await self._save()
        self._log_success("remove_range", started, count=len(targets))
        return len(targets)

    async def remove_where(self, predicate: Predicate) -> int:
        """
        Delete exactly the records matching `predicate` with a single autosave.

        Returns:
            int: Number of records removed.
        """
        started = time.perf_counter()
        matches = await self._load(predicate, "remove_where", as_no_tracking=False)
        for record in matches:
            await self.session.delete(record)
        await self._save()
        self._log_success("remove_where", started, count=len(matches))
        return len(matches)

    # =================================================================================================================
    # Transactions
    # =================================================================================================================

    async def execute_transaction(self, action: Callable[[], Any] | Callable[[], Awaitable[Any]]) -> Any:
        """
        Run `action` as one unit of work: begin, run, autosave, commit.

        Repository calls made inside `action` on the same session flush instead of
        committing. Any failure rolls everything back.

        Args:
            action: A zero-argument function or coroutine function.

        Returns:
            Whatever `action` returned.

        Raises:
            NestedTransactionError: A transaction scope is already active on this session.
            TransactionFailedError: `action` or the final save failed; chained to the original error.
            asyncio.CancelledError: The task was cancelled; the transaction is rolled back first.
        """
        ensure_action(action, self.model_name, "execute_transaction")
        async with async_transaction_scope(self.session, self.model_name):
            result = await self._run(action)
            await self._save()
        return result

    # =================================================================================================================
    # Raw SQL
    # =================================================================================================================

    async def execute_sql_raw(self, sql: str, params: dict[str, Any] | None = None) -> list[ModelType]:
        """
        Materialise records of this model from a raw SELECT.

        Example:
            await repo.execute_sql_raw("SELECT * FROM weather_forecasts WHERE temperature_c > :t", {"t": 20})

        Raises:
            EmptyQueryError: If sql is None, empty or blank.
        """
        stmt = self._raw_query_statement(sql)
        started = time.perf_counter()
        result = await self._execute(stmt, params)
        records = list(result.scalars().all())
        self._log_success("execute_sql_raw", started, count=len(records))
        return records

    async def execute_sql_raw_command(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """
        Execute a raw INSERT/UPDATE/DELETE and autosave.

        Returns:
            int: Rows affected as reported by the driver.
        """
        stmt = self._raw_command_statement(sql)
        started = time.perf_counter()
        result = await self._execute(stmt, params)
        affected = result.rowcount
        await self._save()
        self._log_success("execute_sql_raw_command", started, affected=affected)
        return affected


__all__ = ["AsyncRepository"]
