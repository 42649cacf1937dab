"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"

DEFAULT_TRACKABLE_ENDPOINTS: tuple[str, ...] = (
    "/api/auth/local",
    "/api/auth/local/register",
    "/api/auth/logout",
    "/api/auth/change-password",
    "/api/users/me",
    "/api/user-preferences",
    "/api/privacy-settings",
    "/api/products",
    "/api/orders",
    "/api/cart",
)

DEFAULT_EXCLUDED_ENDPOINTS: tuple[str, ...] = (
    "/api/user-activities",
    "/api/user-behavior",
    "/api/security-events",
    "/api/engagement-metrics",
    "/api/analytics",
    "/admin",
)


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        default="sqlite:///./telemetry.db",
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    secret_key: str = Field(
        description="Secret key used to verify JWT bearer tokens", min_length=1
    )
    app_timezone: str = Field(
        default="UTC",
        description="Timezone used to build hour/day/week/month buckets",
    )
    log_level: str = Field(default="INFO")

    activity_tracking_enabled: bool = True
    trackable_endpoints: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TRACKABLE_ENDPOINTS)
    )
    excluded_endpoints: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_ENDPOINTS)
    )
    anonymize_ip: bool = True
    track_location: bool = True
    track_device_info: bool = True
    location_table: dict[str, str] = Field(
        default_factory=dict,
        description="Static CIDR to 'City, Region, Country' lookup used for coarse locations",
    )

    retention_days: int = Field(default=90, gt=0)
    failed_retention_days: int = Field(default=30, gt=0)
    session_retention_days: int = Field(default=7, gt=0)
    anonymization_days: int = Field(default=180, gt=0)
    archive_days: int = Field(default=365, gt=0)
    retention_batch_size: int = Field(default=1000, gt=0)
    aggregation_page_size: int = Field(default=500, gt=0)
    archive_directory: str = Field(default="archive", min_length=1)

    scheduler_enabled: bool = True
    scheduler_tick_seconds: float = Field(default=60.0, gt=0)
    daily_cleanup_hour: int = Field(default=2, ge=0, le=23)
    weekly_cleanup_weekday: int = Field(
        default=6, ge=0, le=6, description="Weekday as in datetime.weekday(); 6 is Sunday"
    )
    weekly_cleanup_hour: int = Field(default=3, ge=0, le=23)
    monthly_archival_day: int = Field(default=1, ge=1, le=28)
    monthly_archival_hour: int = Field(default=4, ge=0, le=23)

    @model_validator(mode="after")
    def _validate_retention_windows(self) -> "Settings":
        if self.failed_retention_days > self.retention_days:
            raise ValueError(
                "FAILED_RETENTION_DAYS must not exceed RETENTION_DAYS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = [
    "DEFAULT_EXCLUDED_ENDPOINTS",
    "DEFAULT_TRACKABLE_ENDPOINTS",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
