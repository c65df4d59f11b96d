# autolayer/
# │
# ├── exceptions/
# │   ├── __init__.py
# │   ├── base.py      # Repository / mapper errors (e.g. EntityNotFoundError, MappingError)
# │   └── mapper.py    # Map SQLAlchemy storage errors to repository errors

from .base import (
    RepositoryError,
    InvalidArgumentError,
    NullEntityError,
    NullEntityInCollectionError,
    NullPrimaryKeyError,
    EmptyQueryError,
    EntityNotFoundError,
    EmptySetError,
    TransactionFailedError,
    NestedTransactionError,
    StorageError,
    ConstraintViolationError,
    DuplicateError,
    MappingError,
    NullInputError,
)

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
