"""
Settings Module

This module manages all service configuration using Pydantic v2 Settings.
Includes configurations for:
- Application core settings
- Database connections
- Logging
- Flag evaluation and mutation behaviour
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, PostgresDsn, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from flagkeeper.modules.feature_flags.evaluation import EvaluationPolicy


class AppConfig(BaseSettings):
    """Application core configuration."""

    TITLE: str = "Flagkeeper"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Feature flag management and evaluation service"

    # Environment
    ENVIRONMENT: str = Field(
        default="development",
        pattern="^(development|staging|production|test)$"
    )
    DEBUG: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="APP_"
    )


class DatabaseConfig(BaseSettings):
    """Database connection configuration."""

    # Full URL override, e.g. sqlite+aiosqlite:// for local runs
    URL: Optional[str] = None

    # PostgreSQL
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_USER: str = Field(default="flagkeeper")
    POSTGRES_PASSWORD: SecretStr = SecretStr("flagkeeper")
    POSTGRES_DB: str = Field(default="flagkeeper")

    # Connection Pool
    POSTGRES_MIN_POOL_SIZE: int = Field(default=5)
    POSTGRES_MAX_POOL_SIZE: int = Field(default=20)
    POSTGRES_POOL_RECYCLE: int = Field(default=1800)  # 30 minutes

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        """Construct the async connection URL (for async SQLAlchemy)."""
        if self.URL:
            return self.URL
        return str(PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD.get_secret_value(),
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB
        ))

    model_config = SettingsConfigDict(
        env_prefix="DB_"
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    LEVEL: str = Field(default="INFO")
    JSON_LOGS: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="LOG_"
    )


class FlagsConfig(BaseSettings):
    """Flag evaluation and mutation configuration."""

    EVALUATION_POLICY: EvaluationPolicy = Field(default=EvaluationPolicy.MASTER_SWITCH)

    # Upper bound on lock hold time for a single mutation
    TRANSACTION_TIMEOUT_SECONDS: float = Field(default=15.0, gt=0)
    TOGGLE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    RECENT_AUDIT_ENTRIES: int = Field(default=10, ge=0)

    DEFAULT_PAGE_SIZE: int = Field(default=20, ge=1)
    MAX_PAGE_SIZE: int = Field(default=200, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="FLAGS_"
    )


class AppSettings(BaseSettings):
    """Main settings class combining all configuration sections."""

    app: AppConfig = AppConfig()
    db: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    flags: FlagsConfig = FlagsConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=True,
        extra="ignore"
    )


@lru_cache()
def get_settings() -> AppSettings:
    """
    Create cached settings instance.

    Returns:
        Cached AppSettings instance
    """
    return AppSettings()


# Create global settings instance
settings = get_settings()
