"""
Core pytest configuration for the entire test suite.

This module provides only the database setup and logging needed across ALL
kinds of tests (repositories, mapper, logging, config).

Domain-specific fixtures live in:
- tests/test_fixtures/models.py               (mapped classes and mapper targets)
- tests/test_fixtures/repository_fixtures.py  (repositories, factories, seeded data)

Every test gets its own in-memory SQLite database, so repositories are free to
commit and no cleanup is needed between tests.
"""

# -------------------------------
# Standard library imports
# -------------------------------
import logging
from typing import AsyncGenerator, Generator

# -------------------------------
# Early logging tuning (IMPORTANT)
# -------------------------------
# Keep this block before importing sqlalchemy / faker so collection stays quiet.
NOISY_LOGGERS = (
    "faker",
    "faker.factory",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "aiosqlite",
    "asyncio",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

# -------------------------------
# Third-party / project imports
# -------------------------------
import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from autolayer.config.settings import Settings
from autolayer.core.logging.builder import setup_logging
from autolayer.db.base import Base

from .test_fixtures import models  # noqa: F401 - registers the test tables on Base.metadata

# StaticPool keeps a single connection alive, which is what holds an in-memory database together
IN_MEMORY_ASYNC_URL = "sqlite+aiosqlite://"
IN_MEMORY_SYNC_URL = "sqlite://"
SQLITE_CONNECT_ARGS = {"check_same_thread": False}


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """
    Install the package logging configuration once for the session.

    Text format, DEBUG level, console only. pytest's caplog handler is attached
    per test phase, after this runs, so `caplog.records` keeps working.
    """
    setup_logging(Settings(ENV="testing", LOG_LEVEL="DEBUG", LOG_FORMAT="text", LOG_TO_STDOUT=True))
    yield


# ------------------------------------------------------------------------------------------------
# ASYNC DATABASE FIXTURES
# ------------------------------------------------------------------------------------------------

@pytest.fixture()
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(IN_MEMORY_ASYNC_URL, poolclass=StaticPool, connect_args=SQLITE_CONNECT_ARGS)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def async_session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(async_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


# ------------------------------------------------------------------------------------------------
# SYNC DATABASE FIXTURES
# ------------------------------------------------------------------------------------------------

@pytest.fixture()
def sync_engine() -> Generator[Engine, None, None]:
    engine = create_engine(IN_MEMORY_SYNC_URL, poolclass=StaticPool, connect_args=SQLITE_CONNECT_ARGS)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def sync_session(sync_engine: Engine) -> Generator[Session, None, None]:
    maker = sessionmaker(bind=sync_engine, class_=Session, expire_on_commit=False)
    with maker() as session:
        yield session


# Repository test fixtures
from .test_fixtures.repository_fixtures import (  # noqa: E402
    forecast_repo,
    station_repo,
    reading_repo,
    seeded_forecasts,
    stations_with_forecasts,
    sync_forecast_repo,
    sync_station_repo,
    sync_seeded_forecasts,
)
