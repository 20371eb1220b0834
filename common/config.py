"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./clubscheduler.db",
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
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    room_cache_ttl: int = Field(default=60, description="TTL (s) for cached room available-days lookups")
    audit_log_dir: str = Field(default="logs", description="Directory for per-service HTTP audit logs")

    meeting_min_duration_minutes: int = Field(default=30, description="Shortest meeting that may be booked")
    max_room_bookings_per_org: int = Field(
        default=5,
        description="Ceiling on future room-bound meetings an organization may hold at once",
    )
    schedule_timezone: str = Field(
        default="America/New_York",
        description="Time zone used for weekday checks, quota cutoffs and rendered times",
    )

    notifications_enabled: bool = Field(default=True, description="Publish notification events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ broker host")
    rabbitmq_port: int = Field(default=5672, description="RabbitMQ broker port")
    notifications_queue: str = Field(default="notifications", description="Durable queue for notification events")

    users_service_port: int = 8001
    organizations_service_port: int = 8002
    rooms_service_port: int = 8003
    meetings_service_port: int = 8004


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
