"""
Custom exceptions raised by repositories and the entity mapper.
"""

from typing import Any, Iterable

# canonical repository-level exception

class RepositoryError(Exception):
    """
    Base exception for repository and mapper errors.

    - message: human-friendly message
    - fields: optional list of field names related to the error (e.g., ['id'])
    - constraint: optional DB constraint name or identifier (for logs only)
    - error_code: canonical short code (e.g., 'not_found', 'null_entity') used by callers
    """

    def __init__(self, message: str, *, fields: Iterable[str] | None = None,
                 constraint: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields) if fields else None
        self.constraint = constraint
        self.error_code = error_code

    def __str__(self) -> str:
        base = self.message
        parts = []
        if self.fields:
            parts.append(f"fields: {', '.join(self.fields)}")
        if self.constraint:
            parts.append(f"constraint: {self.constraint}")
        if self.error_code:
            parts.append(f"code: {self.error_code}")
        if parts:
            return f"{base} ({'; '.join(parts)})"
        return base

    def to_payload(self) -> dict[str, Any]:
        """
        Return a JSON-serializable dict describing the error.
        Standard shape:
            {
                "detail": "A human-friendly message",
                "code": "not_found",           # optional canonical code
                "fields": ["id"],              # optional list of related fields
            }
        The constraint name is deliberately left out of the payload.
        """
        payload: dict[str, Any] = {"detail": self.message}
        if self.error_code:
            payload["code"] = self.error_code
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload


# =================================================================================================================
# Argument / input errors
# =================================================================================================================

class InvalidArgumentError(RepositoryError):
    """Raised for non-positive ids, invalid page descriptors and malformed predicates/selectors."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="invalid_argument")


class NullEntityError(RepositoryError):
    """Raised when `None` is passed to a single-record mutating operation."""

    def __init__(self, model_name: str):
        super().__init__(f"{model_name} instance must not be None", error_code="null_entity")
        self.model_name = model_name


class NullEntityInCollectionError(RepositoryError):
    """Raised when a batch operation receives no collection, an empty one where members are required, or a `None` member."""

    def __init__(self, model_name: str, message: str | None = None):
        super().__init__(
            message or f"Collection of {model_name} must not be None or contain None members",
            error_code="null_entity_in_collection",
        )
        self.model_name = model_name


class NullPrimaryKeyError(RepositoryError):
    """Raised when a model declares no primary key or a record's key value(s) resolve to None."""

    def __init__(self, model_name: str, *, fields: Iterable[str] | None = None, message: str | None = None):
        super().__init__(
            message or f"{model_name} primary key could not be resolved",
            fields=fields,
            error_code="null_primary_key",
        )
        self.model_name = model_name


class EmptyQueryError(RepositoryError):
    """Raised when a raw SQL string is None, empty or blank."""

    def __init__(self, message: str = "Raw SQL query must not be empty"):
        super().__init__(message, error_code="empty_query")


# =================================================================================================================
# Lookup / result errors
# =================================================================================================================

class EntityNotFoundError(RepositoryError):
    """Raised when a lookup by id or key yields nothing where an existing record was required."""

    def __init__(self, model_name: str, key: Any = None):
        message = f"{model_name} not found" if key is None else f"{model_name} with key {key!r} not found"
        super().__init__(message, error_code="not_found")
        self.model_name = model_name
        self.key = key


class EmptySetError(RepositoryError):
    """Raised when an aggregate (max/min/sum/average) is requested over a set with no records."""

    def __init__(self, model_name: str, aggregate: str):
        super().__init__(
            f"Cannot compute {aggregate} of {model_name}: no records matched",
            error_code="empty_set",
        )
        self.model_name = model_name
        self.aggregate = aggregate


# =================================================================================================================
# Transaction errors
# =================================================================================================================

class TransactionFailedError(RepositoryError):
    """
    Raised after a transaction scope has been rolled back.

    The message carries the original failure's message; the original exception
    is available as `__cause__`.
    """

    def __init__(self, message: str):
        super().__init__(f"Transaction failed and was rolled back: {message}", error_code="transaction_failed")
        self.original_message = message


class NestedTransactionError(TransactionFailedError):
    """Raised when `execute_transaction` is called while a transaction scope is already active on the session."""

    def __init__(self, model_name: str):
        RepositoryError.__init__(
            self,
            f"A transaction is already active for this session ({model_name}); nested transactions are not supported",
            error_code="transaction_failed",
        )
        self.original_message = self.message


# =================================================================================================================
# Storage errors (translated from SQLAlchemy, see exceptions/mapper.py)
# =================================================================================================================

class StorageError(RepositoryError):
    """A storage call failed for a reason that is not an integrity violation."""

    def __init__(self, message: str, *, constraint: str | None = None):
        super().__init__(message, constraint=constraint, error_code="storage_error")


class ConstraintViolationError(RepositoryError):
    """A NOT NULL, FOREIGN KEY or CHECK constraint rejected the write."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None, constraint: str | None = None):
        super().__init__(message, fields=fields, constraint=constraint, error_code="constraint_violation")


class DuplicateError(RepositoryError):
    """A UNIQUE / PRIMARY KEY constraint rejected the write."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None, constraint: str | None = None):
        super().__init__(message, fields=fields, constraint=constraint, error_code="duplicate")


# =================================================================================================================
# Mapper errors
# =================================================================================================================

class MappingError(RepositoryError):
    """Raised when a target field has no source counterpart or the field types are incompatible."""

    def __init__(self, message: str, *, source_type: str, target_type: str, field: str | None = None):
        super().__init__(message, fields=[field] if field else None, error_code="mapping_error")
        self.source_type = source_type
        self.target_type = target_type
        self.field = field


class NullInputError(RepositoryError):
    """Raised when `None` is passed to the entity mapper."""

    def __init__(self, message: str = "Mapping input must not be None"):
        super().__init__(message, error_code="null_input")


__all__ = [
    "RepositoryError",
    "InvalidArgumentError",
    "NullEntityError",
    "NullEntityInCollectionError",
    "NullPrimaryKeyError",
    "EmptyQueryError",
    "EntityNotFoundError",
    "EmptySetError",
    "TransactionFailedError",
    "NestedTransactionError",
    "StorageError",
    "ConstraintViolationError",
    "DuplicateError",
    "MappingError",
    "NullInputError",
]


r"""
# =================================================================================================================
# Error kinds at a glance
# =================================================================================================================

| Class                         | error_code                  | Raised by                                          |
| ----------------------------- | --------------------------- | -------------------------------------------------- |
| `InvalidArgumentError`        | `invalid_argument`          | id <= 0, page number/size <= 0, bad predicate      |
| `NullEntityError`             | `null_entity`               | add / update / remove with None                    |
| `NullEntityInCollectionError` | `null_entity_in_collection` | *_range with None collection or None member        |
| `NullPrimaryKeyError`         | `null_primary_key`          | model has no primary key, key value is None        |
| `EntityNotFoundError`         | `not_found`                 | update / update_by_id / remove_by_id on a miss     |
| `EmptySetError`               | `empty_set`                 | max / min / sum / average over no records          |
| `EmptyQueryError`             | `empty_query`               | execute_sql_raw* with a blank string               |
| `TransactionFailedError`      | `transaction_failed`        | execute_transaction after rollback                 |
| `DuplicateError`              | `duplicate`                 | save hit a UNIQUE / PK constraint                  |
| `ConstraintViolationError`    | `constraint_violation`      | save hit a NOT NULL / FK / CHECK constraint        |
| `StorageError`                | `storage_error`             | any other SQLAlchemy error during save             |
| `MappingError`                | `mapping_error`             | EntityMapper: missing field or incompatible type   |
| `NullInputError`              | `null_input`                | EntityMapper called with None                      |

Every class derives from `RepositoryError`, so callers that only care about
"the data layer failed" can catch a single type.
"""
