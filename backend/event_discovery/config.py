"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySettings(BaseSettings):
    """Whole-job retry policy applied when a job payload carries no override."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Delay before the first retry (milliseconds)",
    )
    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential growth factor between retries",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Event Discovery"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    admin_api_key: str | None = Field(
        default=None,
        description="When set, admin routes require a matching X-API-Key header",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./event_discovery.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # Google Places
    google_places_api_key: str | None = Field(default=None)
    google_places_auto_approve: bool = Field(default=False)
    google_places_rate_limit_requests: int = Field(default=100, ge=1)
    google_places_rate_limit_window: float = Field(default=60.0, gt=0)
    google_places_place_types: list[str] = Field(
        default=["restaurant", "cafe", "bar", "night_club"],
    )
    google_places_details_per_type: int = Field(default=5, ge=1)

    # Curated venues
    curated_enabled: bool = Field(default=True)
    curated_auto_approve: bool = Field(default=True)

    # Default search area (Indiranagar, Bangalore)
    default_latitude: float = Field(default=12.9716)
    default_longitude: float = Field(default=77.6411)
    default_radius_m: int = Field(default=2000, gt=0)

    # Outbound calls
    rate_limit_strategy: Literal["fixed_delay", "token_bucket"] = "fixed_delay"
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # Worker pool
    worker_concurrency: int = Field(default=2, ge=1)
    worker_poll_interval_seconds: float = Field(default=1.0, gt=0)
    job_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Wall-clock budget for a single job execution",
    )
    dedup_cache_size: int = Field(default=10_000, ge=0)

    # Scheduler
    scheduler_enabled: bool = Field(default=True)
    recurring_cron: str = Field(
        default="0 */6 * * *",
        description="Crontab expression for recurring fetches of every source",
    )

    # Retry policy (nested)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
