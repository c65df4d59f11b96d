import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from autolayer.config.settings import SQLITE_FALLBACK_URL, Settings
from autolayer.db.session import create_async_session_factory, create_session_factory
from autolayer.validators.config_validators import to_sync_url


@pytest.fixture
def clean_env(monkeypatch):
    """Keep variables from the developer's shell out of Settings()."""
    for name in ("DATABASE_URL", "SYNC_DATABASE_URL", "POSTGRES_HOST", "POSTGRES_USERNAME", "POSTGRES_DB",
                 "POSTGRES_PASSWORD", "LOG_LEVEL", "LOG_FORMAT", "LOG_DIR"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_sqlite_fallback(clean_env):
    settings = Settings(_env_file=None)
    assert settings.DATABASE_URL == SQLITE_FALLBACK_URL
    assert settings.SYNC_DATABASE_URL == "sqlite:///./autolayer.db"


def test_database_url_from_environment(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql+asyncpg://app:pw@db:5432/weather")
    settings = Settings(_env_file=None)
    assert settings.DATABASE_URL == "postgresql+asyncpg://app:pw@db:5432/weather"
    assert settings.SYNC_DATABASE_URL == "postgresql://app:pw@db:5432/weather"


def test_blank_database_url_counts_as_unset(clean_env):
    clean_env.setenv("DATABASE_URL", "   ")
    assert Settings(_env_file=None).DATABASE_URL == SQLITE_FALLBACK_URL


def test_postgres_parts(clean_env):
    clean_env.setenv("POSTGRES_HOST", "db")
    clean_env.setenv("POSTGRES_USERNAME", "app")
    clean_env.setenv("POSTGRES_PASSWORD", "pw")
    clean_env.setenv("POSTGRES_DB", "weather")
    assert Settings(_env_file=None).DATABASE_URL == "postgresql+asyncpg://app:pw@db:5432/weather"


def test_explicit_sync_url_wins(clean_env):
    clean_env.setenv("SYNC_DATABASE_URL", "postgresql+psycopg://app@db/weather")
    assert Settings(_env_file=None).SYNC_DATABASE_URL == "postgresql+psycopg://app@db/weather"


def test_log_settings_are_normalised(clean_env):
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("LOG_FORMAT", "TEXT")
    settings = Settings(_env_file=None)
    assert settings.LOG_LEVEL == "DEBUG"
    assert settings.LOG_FORMAT == "text"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("sqlite+aiosqlite:///./autolayer.db", "sqlite:///./autolayer.db"),
        ("postgresql+asyncpg://u:p@h:5432/db", "postgresql://u:p@h:5432/db"),
        ("postgresql://u@h/db", "postgresql://u@h/db"),
    ],
)
def test_to_sync_url(url, expected):
    assert to_sync_url(url) == expected


def test_session_factories_keep_records_readable_after_commit():
    async_factory = create_async_session_factory("sqlite+aiosqlite://")
    sync_factory = create_session_factory("sqlite://")

    assert issubclass(async_factory.class_, AsyncSession)
    assert issubclass(sync_factory.class_, Session)
    assert async_factory.kw["expire_on_commit"] is False
    assert sync_factory.kw["expire_on_commit"] is False
