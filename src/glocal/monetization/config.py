"""
Monetization core configuration
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from glocal.monetization.settings import Settings, get_settings


class PaymentConfig(BaseModel):
    """Payment state machine configuration"""

    model_config = ConfigDict(frozen=True)

    default_currency: str = Field("INR", description="Default currency code")
    max_retries: int = Field(3, ge=0, description="Retry budget stamped on new transactions")
    retry_window_hours: int = Field(
        1, ge=0, description="Hours a failed payment waits before it is retry-eligible"
    )
    failed_payment_retention_days: int = Field(
        30, ge=1, description="Days before failed payments are swept"
    )
    strict_row_validation: bool = Field(
        True, description="Reject persisted rows with unknown enum values"
    )


class GracePeriodConfig(BaseModel):
    """Subscription grace period configuration"""

    model_config = ConfigDict(frozen=True)

    grace_period_days: int = Field(7, ge=1, description="Length of the grace period in days")
    reminder_days: list[int] = Field(
        default=[3, 6],
        description="Days into the grace period at which reminders are sent",
    )
    max_retries: int = Field(3, ge=0, description="Payment retries attempted during grace")
    retry_interval_hours: int = Field(24, ge=1, description="Hours between payment retries")
    strict_row_validation: bool = Field(
        True, description="Reject persisted rows with unknown enum values"
    )

    @field_validator("reminder_days")
    @classmethod
    def validate_reminder_days(cls, v: list[int]) -> list[int]:
        """Reminder days must be non-negative and are kept in ascending order."""
        if any(day < 0 for day in v):
            raise ValueError("Reminder days must be non-negative")
        return sorted(set(v))

    @property
    def first_reminder_day(self) -> int | None:
        return self.reminder_days[0] if self.reminder_days else None


class ConflictResolutionConfig(BaseModel):
    """Conflict resolver configuration"""

    model_config = ConfigDict(frozen=True)

    auto_resolve_conflicts: bool = Field(True, description="Apply strategies automatically")
    default_strategy: str = Field(
        "last_write_wins", description="Strategy used when the caller gives none"
    )
    strict_row_validation: bool = Field(
        True, description="Reject persisted rows with unknown enum values"
    )


class MonetizationConfig(BaseModel):
    """Main monetization configuration"""

    model_config = ConfigDict(frozen=True)

    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    grace_period: GracePeriodConfig = Field(default_factory=GracePeriodConfig)
    conflicts: ConflictResolutionConfig = Field(default_factory=ConflictResolutionConfig)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MonetizationConfig":
        """Create configuration from environment-backed settings"""
        values = (settings or get_settings()).monetization

        return cls(
            payment=PaymentConfig(
                default_currency=values.default_currency,
                max_retries=values.payment_max_retries,
                retry_window_hours=values.retry_window_hours,
                failed_payment_retention_days=values.failed_payment_retention_days,
                strict_row_validation=values.strict_row_validation,
            ),
            grace_period=GracePeriodConfig(
                grace_period_days=values.grace_period_days,
                reminder_days=values.reminder_days,
                max_retries=values.payment_max_retries,
                retry_interval_hours=values.retry_interval_hours,
                strict_row_validation=values.strict_row_validation,
            ),
            conflicts=ConflictResolutionConfig(
                auto_resolve_conflicts=values.auto_resolve_conflicts,
                default_strategy=values.default_conflict_strategy,
                strict_row_validation=values.strict_row_validation,
            ),
        )
