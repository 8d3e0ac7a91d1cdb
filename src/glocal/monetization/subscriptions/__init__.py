"""Subscription holder grace period lifecycle."""

from glocal.monetization.subscriptions.models import (
    GracePeriodStatus,
    GracePeriodSweepResult,
    ReminderType,
    SubscriptionState,
    SubscriptionStats,
    SubscriptionStatus,
)

__all__ = [
    "GracePeriodStatus",
    "GracePeriodSweepResult",
    "ReminderType",
    "SubscriptionState",
    "SubscriptionStats",
    "SubscriptionStatus",
]
