"""
Subscription lifecycle manager.

Drives a subscription holder through the grace period that follows a failed
payment: start, reminders, expiry, and restoration after a successful payment.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from glocal.monetization.config import GracePeriodConfig
from glocal.monetization.exceptions import MonetizationError, SubscriptionHolderNotFoundError
from glocal.monetization.mappers import map_subscription_state
from glocal.monetization.metrics import MonetizationMetrics
from glocal.monetization.notifications import NotificationDispatcher
from glocal.monetization.persistence.client import Operation, PersistenceClient
from glocal.monetization.subscriptions.models import (
    GracePeriodStatus,
    GracePeriodSweepResult,
    ReminderType,
    SubscriptionState,
    SubscriptionStats,
    SubscriptionStatus,
)

logger = structlog.get_logger(__name__)

_BOUNDARY_ERRORS = (MonetizationError, SQLAlchemyError)
_ONE_DAY = timedelta(days=1)


class SubscriptionLifecycleManager:
    """
    Grace period state machine for subscription holders.

    Handles:
    - Starting a grace period after a failed payment
    - Day-based reminders and expiry (driven by a periodic sweep)
    - Restoring the subscription after a successful payment
    """

    def __init__(
        self,
        client: PersistenceClient,
        config: GracePeriodConfig | None = None,
        notifier: NotificationDispatcher | None = None,
        metrics: MonetizationMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.config = config or GracePeriodConfig()
        self.notifier = notifier or NotificationDispatcher(
            client, grace_period_days=self.config.grace_period_days
        )
        self.metrics = metrics or MonetizationMetrics()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ==================== Transitions ====================

    async def start_grace_period(self, entity_id: str, reason: str) -> bool:
        """
        Start grace period for failed payment.

        Starting again while already in grace re-stamps the start time.
        """
        now = self._clock()
        updated = await self._update_state(
            entity_id,
            {
                "subscription_status": SubscriptionStatus.GRACE_PERIOD.value,
                "subscription_grace_period_start": now,
                "subscription_grace_reason": reason,
                "subscription_last_reminder_day": None,
            },
            action="start grace period",
        )
        if not updated:
            return False

        self.metrics.record_grace_period_started(reason)
        logger.info("Grace period started", entity_id=entity_id, reason=reason)
        await self.notifier.send(
            entity_id,
            "started",
            grace_period_type="started",
            reason=reason,
            timestamp=now.isoformat(),
        )
        return True

    async def expire_grace_period(self, entity_id: str) -> bool:
        """Expire grace period and deactivate the holder."""
        now = self._clock()
        updated = await self._update_state(
            entity_id,
            {
                "subscription_status": SubscriptionStatus.EXPIRED.value,
                "subscription_grace_period_start": None,
                "subscription_expired_at": now,
                "subscription_last_reminder_day": None,
            },
            action="expire grace period",
        )
        if not updated:
            return False

        self.metrics.record_grace_period_expired()
        logger.info("Grace period expired", entity_id=entity_id)
        await self.notifier.send(
            entity_id, "expired", grace_period_type="expired", timestamp=now.isoformat()
        )
        return True

    async def restore_subscription(self, entity_id: str, payment_transaction_id: str) -> bool:
        """Restore subscription after successful payment, whether or not in grace."""
        now = self._clock()
        updated = await self._update_state(
            entity_id,
            {
                "subscription_status": SubscriptionStatus.ACTIVE.value,
                "subscription_grace_period_start": None,
                "subscription_grace_reason": None,
                "subscription_restored_at": now,
                "subscription_last_reminder_day": None,
            },
            action="restore subscription",
        )
        if not updated:
            return False

        self.metrics.record_subscription_restored()
        logger.info(
            "Subscription restored",
            entity_id=entity_id,
            payment_transaction_id=payment_transaction_id,
        )
        await self.notifier.send(
            entity_id,
            "restored",
            grace_period_type="restored",
            payment_transaction_id=payment_transaction_id,
            timestamp=now.isoformat(),
        )
        return True

    async def _update_state(self, entity_id: str, values: dict[str, Any], action: str) -> bool:
        try:
            await self.client.call(
                Operation.UPDATE_SUBSCRIPTION_STATE, {"entity_id": entity_id, "values": values}
            )
        except SubscriptionHolderNotFoundError:
            logger.warning("Subscription holder not found", entity_id=entity_id, action=action)
            return False
        except _BOUNDARY_ERRORS as exc:
            logger.error(
                "Failed to update subscription state",
                entity_id=entity_id,
                action=action,
                error=str(exc),
            )
            return False
        return True

    # ==================== Grace period arithmetic ====================

    def _days_in_grace_period(self, state: SubscriptionState, now: datetime) -> int:
        if state.grace_period_start is None:
            return 0
        return (now - state.grace_period_start) // _ONE_DAY

    def _grace_status(self, state: SubscriptionState, now: datetime) -> GracePeriodStatus:
        if not state.in_grace_period:
            return GracePeriodStatus()

        days_in = self._days_in_grace_period(state, now)
        return GracePeriodStatus(
            in_grace_period=True,
            days_remaining=max(0, self.config.grace_period_days - days_in),
            should_expire=days_in >= self.config.grace_period_days,
        )

    async def check_grace_period_status(self, entity_id: str) -> GracePeriodStatus:
        """Report whether the holder is in grace, days left, and whether it should expire."""
        state = await self.get_subscription_state(entity_id)
        if state is None:
            return GracePeriodStatus()
        return self._grace_status(state, self._clock())

    # ==================== Reminders ====================

    async def send_grace_period_reminder(
        self, entity_id: str, reminder_type: ReminderType | str
    ) -> bool:
        """Send a first or final grace period reminder."""
        try:
            kind = ReminderType(reminder_type)
        except ValueError:
            logger.warning(
                "Unknown reminder type", entity_id=entity_id, reminder_type=reminder_type
            )
            return False

        state = await self.get_subscription_state(entity_id)
        if state is None or not state.in_grace_period:
            return False

        days_in = self._days_in_grace_period(state, self._clock())
        sent = await self.notifier.send(
            entity_id,
            f"reminder_{kind.value}",
            reminder_type=kind.value,
            grace_period_start=state.grace_period_start,
            days_remaining=max(0, self.config.grace_period_days - days_in),
        )
        if sent:
            self.metrics.record_reminder_sent(kind.value)
        return sent

    async def process_grace_period_reminders(self) -> GracePeriodSweepResult:
        """
        Sweep every holder in grace period.

        Sends a reminder when the day count hits a configured reminder day
        exactly, at most once per holder and day, and expires holders whose grace period is over. A failure
        for one holder is logged and the sweep moves on.
        """
        result = GracePeriodSweepResult()

        for state in await self.get_entities_in_grace_period():
            try:
                now = self._clock()
                status = self._grace_status(state, now)
                if not status.in_grace_period:
                    continue

                days_in = self._days_in_grace_period(state, now)
                if days_in in self.config.reminder_days and state.last_reminder_day != days_in:
                    reminder_type = (
                        ReminderType.FIRST
                        if days_in == self.config.first_reminder_day
                        else ReminderType.FINAL
                    )
                    if await self.send_grace_period_reminder(state.entity_id, reminder_type):
                        result.reminders_sent += 1
                        await self._update_state(
                            state.entity_id,
                            {"subscription_last_reminder_day": days_in},
                            action="record reminder day",
                        )

                if status.should_expire and await self.expire_grace_period(state.entity_id):
                    result.expired += 1

                result.processed += 1
            except Exception:
                logger.exception("Failed to process grace period", entity_id=state.entity_id)

        logger.info(
            "Grace period sweep finished",
            processed=result.processed,
            reminders_sent=result.reminders_sent,
            expired=result.expired,
        )
        return result

    # ==================== Queries ====================

    async def get_subscription_state(self, entity_id: str) -> SubscriptionState | None:
        try:
            row = await self.client.call(Operation.GET_SUBSCRIPTION_STATE, {"entity_id": entity_id})
            if not row:
                return None
            return map_subscription_state(row, strict=self.config.strict_row_validation)
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to get subscription state", entity_id=entity_id, error=str(exc))
            return None

    async def get_entities_in_grace_period(self) -> list[SubscriptionState]:
        """Holders currently in grace period, oldest grace start first."""
        try:
            rows = await self.client.call(Operation.LIST_SUBSCRIPTIONS_IN_GRACE_PERIOD, {})
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to get entities in grace period", error=str(exc))
            return []

        states = []
        for row in rows or []:
            try:
                states.append(map_subscription_state(row, strict=self.config.strict_row_validation))
            except MonetizationError as exc:
                logger.warning(
                    "Skipping malformed subscription holder",
                    entity_id=row.get("id"),
                    error=str(exc),
                )
        return states

    async def get_subscription_stats(self) -> SubscriptionStats:
        try:
            rows = await self.client.call(Operation.LIST_SUBSCRIPTION_STATUSES, {})
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to get subscription stats", error=str(exc))
            return SubscriptionStats()

        stats = SubscriptionStats()
        for row in rows or []:
            count = int(row.get("count") or 0)
            stats.total += count
            try:
                status = SubscriptionStatus(row.get("subscription_status"))
            except ValueError:
                continue
            setattr(stats, status.value, getattr(stats, status.value) + count)
        return stats
