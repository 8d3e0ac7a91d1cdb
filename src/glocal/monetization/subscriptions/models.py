"""
Subscription holder state and grace period models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    """Subscription status of a subscribable entity."""

    TRIAL = "trial"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ReminderType(str, Enum):
    """Grace period reminder kinds."""

    FIRST = "first"
    FINAL = "final"


class SubscriptionState(BaseModel):
    """Grace-period relevant fields of a subscription holder."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    subscription_status: SubscriptionStatus
    grace_period_start: datetime | None = None
    grace_reason: str | None = None
    expired_at: datetime | None = None
    restored_at: datetime | None = None
    last_reminder_day: int | None = None

    @property
    def in_grace_period(self) -> bool:
        return (
            self.subscription_status == SubscriptionStatus.GRACE_PERIOD
            and self.grace_period_start is not None
        )

    @property
    def is_publicly_visible(self) -> bool:
        """Expired holders must be hidden by read paths."""
        return self.subscription_status != SubscriptionStatus.EXPIRED


class GracePeriodStatus(BaseModel):
    """Result of ``check_grace_period_status``."""

    model_config = ConfigDict(frozen=True)

    in_grace_period: bool = False
    days_remaining: int = 0
    should_expire: bool = False


class GracePeriodSweepResult(BaseModel):
    """Counters returned by the reminder sweep."""

    processed: int = 0
    reminders_sent: int = 0
    expired: int = 0


class SubscriptionStats(BaseModel):
    """Counts of subscription holders per status."""

    total: int = 0
    trial: int = 0
    active: int = 0
    grace_period: int = 0
    expired: int = 0
    cancelled: int = 0
