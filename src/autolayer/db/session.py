from typing import AsyncGenerator, Generator
from functools import lru_cache

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)

from autolayer.config.settings import get_settings


def create_async_session_factory(url: str | None = None, **engine_kwargs) -> async_sessionmaker[AsyncSession]:
    """
    Build an AsyncEngine and a session factory for `AsyncRepository`.

    `expire_on_commit=False` keeps records returned by the repositories readable
    after autosave commits.
    """
    settings = get_settings()
    engine_kwargs.setdefault("echo", settings.SQLALCHEMY_ECHO)
    engine_kwargs.setdefault("pool_pre_ping", settings.SQLALCHEMY_POOL_PRE_PING)
    engine: AsyncEngine = create_async_engine(url or settings.DATABASE_URL, **engine_kwargs)
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def create_session_factory(url: str | None = None, **engine_kwargs) -> sessionmaker[Session]:
    """Blocking counterpart of `create_async_session_factory`, for `Repository`."""
    settings = get_settings()
    engine_kwargs.setdefault("echo", settings.SQLALCHEMY_ECHO)
    engine_kwargs.setdefault("pool_pre_ping", settings.SQLALCHEMY_POOL_PRE_PING)
    engine: Engine = create_engine(url or settings.SYNC_DATABASE_URL, **engine_kwargs)
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


# Engines are created on first use, never at import time.
@lru_cache()
def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    return create_async_session_factory()


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session from the default factory and close it afterwards.

    Usage:
        async for session in get_async_session():
            repo = AsyncRepository(WeatherForecast, session)
    """
    async with get_async_session_factory()() as session:
        yield session


def get_session() -> Generator[Session, None, None]:
    with get_session_factory()() as session:
        yield session
