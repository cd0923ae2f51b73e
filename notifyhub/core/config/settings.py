# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

Settings are loaded from environment variables with sensible defaults.
The Settings class aggregates all subsettings; get_settings() returns a
cached singleton.

Example:
    >>> from notifyhub.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.notifications.default_timezone
    'UTC'
"""

from functools import lru_cache
from typing import Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationSettings(BaseSettings):
    """Notification engine configuration.

    Attributes:
        default_timezone: IANA zone used when a preference has none or an
            unknown one.
        max_retries: Retry cap for retryable transport failures.
        retry_base_delay_seconds: Backoff base; attempt n waits base * 2**(n-1).
        retry_max_delay_seconds: Upper bound for a single backoff delay.
        history_default_page_size: Page size used when a query gives none.
        history_max_page_size: Largest page a history query may request.
        digest_sweep_interval_seconds: How often due digest buckets are drained.
        dispatch_sweep_interval_seconds: How often overdue scheduled instances
            are re-dispatched.
        dispatch_sweep_batch_size: Maximum instances handled per recovery sweep.
        storage_backend: Where preferences and instances live.
        digest_backend: Where digest buckets live.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        extra="ignore",
    )

    default_timezone: str = "UTC"
    max_retries: int = Field(default=5, ge=0)
    retry_base_delay_seconds: float = Field(default=2.0, gt=0)
    retry_max_delay_seconds: float = Field(default=3600.0, gt=0)
    history_default_page_size: int = Field(default=20, ge=1)
    history_max_page_size: int = Field(default=100, ge=1)
    digest_sweep_interval_seconds: int = Field(default=300, ge=1)
    dispatch_sweep_interval_seconds: int = Field(default=60, ge=1)
    dispatch_sweep_batch_size: int = Field(default=500, ge=1)
    storage_backend: Literal["memory", "database"] = "memory"
    digest_backend: Literal["memory", "redis"] = "memory"

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, value: str) -> str:
        """The fallback zone itself must always resolve."""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown default timezone: {value}") from e
        return value


class DatabaseSettings(BaseSettings):
    """Database configuration for preference and delivery records.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        dsn: Full SQLAlchemy URL; overrides the components when set.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        echo: Log every SQL statement.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    user: str = "notifyhub"
    password: SecretStr = SecretStr("notifyhub_password")
    host: str = "notifyhub-db"
    port: int = 5432
    database: str = "notifyhub"
    dsn: str | None = None
    pool_size: int = 10
    max_overflow: int = 20
    echo: bool = False

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for digest buckets and message brokering.

    Tenant isolation is achieved via key prefix: tenant:{tenant_id}:*

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "notifyhub-redis"
    port: int = 6379
    password: SecretStr = SecretStr("notifyhub_redis_password")
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
        scheduler_enabled: Register the periodic sweeps on startup.
        broker_namespace: Prefix of the Redis keys holding the sweep queues.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
    )

    processes: int = 2
    threads: int = 4
    scheduler_enabled: bool = True
    broker_namespace: str = "notifyhub"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        notifications: Notification engine settings.
        db: Database settings.
        redis: Redis settings.
        worker: Background worker settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with process-local stores
                or a page size window that cannot be satisfied.
        """
        notifications = self.notifications
        if notifications.history_default_page_size > notifications.history_max_page_size:
            raise ValueError(
                "NOTIFY_HISTORY_DEFAULT_PAGE_SIZE cannot exceed NOTIFY_HISTORY_MAX_PAGE_SIZE."
            )
        if self.environment == "production":
            if notifications.storage_backend == "memory":
                raise ValueError(
                    "In-memory notification storage is not allowed in production. "
                    "Set NOTIFY_STORAGE_BACKEND=database."
                )
            if self.db.password.get_secret_value() == "notifyhub_password":
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DB_PASSWORD environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
