"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
For nested settings, use double underscore: MONETIZATION__GRACE_PERIOD_DAYS=10
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = Field("glocal-monetization", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full async SQLAlchemy URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("glocal", description="Database name")
        username: str = Field("glocal", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Celery Configuration
    # ============================================================

    class CelerySettings(BaseModel):
        """Celery configuration for the scheduled sweeps."""

        broker_url: str = Field("redis://localhost:6379/0", description="Broker URL")
        result_backend: str = Field("redis://localhost:6379/1", description="Result backend")
        grace_period_sweep_minutes: int = Field(
            60, description="Minutes between grace period sweeps"
        )
        retry_sweep_minutes: int = Field(30, description="Minutes between payment retry sweeps")
        cleanup_sweep_hours: int = Field(24, description="Hours between failed payment cleanups")

    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_metrics: bool = Field(True, description="Enable metrics collection")
        meter_name: str = Field("glocal.monetization", description="OpenTelemetry meter name")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Monetization Configuration
    # ============================================================

    class MonetizationSettings(BaseModel):
        """Payment, grace period and conflict resolution configuration."""

        # Payments
        default_currency: str = Field("INR", description="Default currency code")
        payment_max_retries: int = Field(3, description="Retry budget per transaction")
        retry_window_hours: int = Field(
            1, description="Hours a failed payment waits before it is retry-eligible"
        )
        failed_payment_retention_days: int = Field(
            30, description="Days before failed payments are swept"
        )

        # Grace period
        grace_period_days: int = Field(7, description="Length of the grace period in days")
        reminder_days: list[int] = Field(
            default_factory=lambda: [3, 6],
            description="Days into the grace period at which reminders are sent",
        )
        retry_interval_hours: int = Field(24, description="Hours between payment retries")

        # Conflict resolution
        auto_resolve_conflicts: bool = Field(True, description="Apply strategies automatically")
        default_conflict_strategy: str = Field(
            "last_write_wins", description="Strategy used when the caller gives none"
        )

        # Row mapping
        strict_row_validation: bool = Field(
            True, description="Reject persisted rows with unknown enum values"
        )

    monetization: MonetizationSettings = MonetizationSettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> str | Environment:
        """Validate environment."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
