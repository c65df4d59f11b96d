"""
Repository layer.

One generic repository per mapped class, in a blocking and an async form with
the same method names:

Usage:
    from autolayer.repositories import AsyncRepository, Repository

    forecasts = AsyncRepository(WeatherForecast, async_session)
    stations = Repository(Station, session)
"""

from .base_repository import RepositoryCore
from .async_repository import AsyncRepository
from .repository import Repository

__all__ = [
    "RepositoryCore",
    "AsyncRepository",
    "Repository",
]
