"""Configuration settings loaded from environment variables."""

from dataclasses import dataclass
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ToleranceSettings:
    """Early/late margins around a pickup window, in minutes."""

    early_minutes: int = 15
    late_minutes: int = 15


@dataclass(frozen=True)
class SchedulerSettings:
    """Sweep periods and grace period for the lifecycle scheduler."""

    promote_interval_seconds: float = 5
    demote_interval_seconds: float = 60
    expire_interval_seconds: float = 3600
    grace_period_minutes: int = 2
    enable_auto_expiry: bool = True


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""

    # Redis (empty URL disables distributed locks)
    redis_url: str = ""
    redis_lock_ttl_seconds: int = 5
    claim_lock_wait_seconds: float = Field(default=2.0, ge=0)

    # Pickup tolerance
    early_tolerance_minutes: int = Field(default=15, ge=0)
    late_tolerance_minutes: int = Field(default=15, ge=0)

    # Background sweeps
    grace_period_minutes: int = Field(default=2, ge=0)
    promote_interval_seconds: float = Field(default=5, gt=0)
    demote_interval_seconds: float = Field(default=60, gt=0)
    expire_interval_seconds: float = Field(default=3600, gt=0)
    enable_auto_expiry: bool = True

    # Logging
    log_level: str = "INFO"

    # Application
    app_name: str = "donation-lifecycle"
    environment: str = "development"

    @property
    def tolerance(self) -> ToleranceSettings:
        return ToleranceSettings(
            early_minutes=self.early_tolerance_minutes,
            late_minutes=self.late_tolerance_minutes,
        )

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings(
            promote_interval_seconds=self.promote_interval_seconds,
            demote_interval_seconds=self.demote_interval_seconds,
            expire_interval_seconds=self.expire_interval_seconds,
            grace_period_minutes=self.grace_period_minutes,
            enable_auto_expiry=self.enable_auto_expiry,
        )


def load_settings() -> Settings:
    """Load and validate settings from environment."""
    return Settings()
