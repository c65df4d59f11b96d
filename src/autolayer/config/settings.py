from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from pathlib import Path
from typing import Literal
from functools import lru_cache
from ..validators.config_validators import to_uppercase, to_lowercase, blank_to_none, to_sync_url

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./autolayer.db"


class Settings(BaseSettings):
    """
    Data-layer settings loaded from the environment (and an optional .env file).
    """

    # Environment
    ENV: Literal["development", "testing", "staging", "production"] = "development"

    # Database configuration: either a full URL or the POSTGRES_* parts
    DATABASE_URL_OVERRIDE: str | None = Field(default=None, validation_alias="DATABASE_URL")
    SYNC_DATABASE_URL_OVERRIDE: str | None = Field(default=None, validation_alias="SYNC_DATABASE_URL")

    POSTGRES_DRIVER: str = "asyncpg"
    POSTGRES_USERNAME: str | None = None
    POSTGRES_PASSWORD: str | None = None
    POSTGRES_HOST: str | None = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str | None = None

    # SQLAlchemy
    SQLALCHEMY_ECHO: bool = False
    SQLALCHEMY_POOL_PRE_PING: bool = True

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"
    LOG_TO_STDOUT: bool = True
    LOG_DIR: Path | None = None
    LOG_MAX_BYTES: int = 10_000_000  # 10 MB
    LOG_BACKUP_COUNT: int = 5
    ENABLE_SQL_LOGGING: bool = False

    # --- Derived settings ---
    @property
    def DATABASE_URL(self) -> str:
        """
        Return the async database URL.

        Precedence:
        - DATABASE_URL from the environment, verbatim.
        - A PostgreSQL URL assembled from POSTGRES_* when host, user and database are all set.
        - A local SQLite file driven by aiosqlite.

        Returns:
            str: The connection URL for `create_async_engine`.
        """
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE

        if self.POSTGRES_HOST and self.POSTGRES_USERNAME and self.POSTGRES_DB:
            password = f":{self.POSTGRES_PASSWORD}" if self.POSTGRES_PASSWORD else ""
            return (
                f"postgresql+{self.POSTGRES_DRIVER}://"
                f"{self.POSTGRES_USERNAME}{password}@"
                f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
                f"{self.POSTGRES_DB}"
            )

        return SQLITE_FALLBACK_URL

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """
        URL for the blocking `Repository`: SYNC_DATABASE_URL if set, else DATABASE_URL
        with its async driver replaced by the backend's default one.
        """
        if self.SYNC_DATABASE_URL_OVERRIDE:
            return self.SYNC_DATABASE_URL_OVERRIDE
        return to_sync_url(self.DATABASE_URL)

    # --- Validators ---
    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: str | None) -> str | None:
        """
        Normalize LOG_LEVEL to uppercase so "debug" and "DEBUG" are equivalent.
        """
        return to_uppercase(v)

    @field_validator("LOG_FORMAT", mode="before")
    def normalize_log_format(cls, v: str | None) -> str | None:
        return to_lowercase(v)

    @field_validator("DATABASE_URL_OVERRIDE", "SYNC_DATABASE_URL_OVERRIDE", "LOG_DIR", mode="before")
    def empty_as_unset(cls, v):
        return blank_to_none(v)

    # --- ConfigDict settings ---
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )



@lru_cache()
def get_settings() -> Settings:
    return Settings()
