"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./venue_booking.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    venue_cache_ttl: int = Field(default=60, description="TTL (s) for cached venue listings")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")

    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on waiting for the venue/date critical section.",
    )
    contention_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts made for a decision before a contention timeout is surfaced.",
    )
    contention_retry_backoff_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Base backoff between contention retries, doubled on each attempt.",
    )
    blocked_policy: Literal["hold", "reject"] = Field(
        default="hold",
        description="What happens to a non-priority submission that overlaps existing bookings.",
    )

    document_root: str = Field(default="./booking-documents", description="Root directory of the document store")
    max_document_bytes: int = Field(default=10 * 1024 * 1024, description="Largest accepted document upload")

    events_enabled: bool = Field(default=False, description="Publish booking decisions to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ broker host")
    rabbitmq_queue: str = Field(default="bookings", description="Durable queue receiving booking events")

    users_service_port: int = 8001
    venues_service_port: int = 8002
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
