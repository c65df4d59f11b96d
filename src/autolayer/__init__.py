"""
autolayer: a generic data-access layer for SQLAlchemy-mapped classes.

    from autolayer import AsyncRepository, map_to

    forecasts = AsyncRepository(WeatherForecast, session)
    rows = await forecasts.get_paged(2, 10)
    dtos = [map_to(row, ForecastDTO) for row in rows]
"""

from .exceptions import (
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
from .mapping import EntityMapper, map_to, map_to_list
from .repositories import AsyncRepository, Repository

__all__ = [
    "AsyncRepository",
    "Repository",
    "EntityMapper",
    "map_to",
    "map_to_list",
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
