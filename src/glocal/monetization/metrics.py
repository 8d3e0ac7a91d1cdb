"""
Monetization metrics

Counters are created through the OpenTelemetry metrics API. Without a
configured SDK meter provider every instrument is a no-op.
"""

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Meter

from glocal.monetization.settings import get_settings


class MonetizationMetrics:
    """Lifecycle metrics collector"""

    def __init__(self, meter: Meter | None = None) -> None:
        self.meter = meter or metrics.get_meter(get_settings().observability.meter_name)

        # Payment metrics
        self.payment_created_counter = self._create_counter(
            name="monetization.payment.created",
            description="Number of payment transactions created",
        )
        self.payment_transition_counter = self._create_counter(
            name="monetization.payment.transition",
            description="Number of applied payment state transitions",
        )
        self.payment_transition_rejected_counter = self._create_counter(
            name="monetization.payment.transition_rejected",
            description="Number of rejected payment state transitions",
        )
        self.payment_retry_counter = self._create_counter(
            name="monetization.payment.retry",
            description="Number of failed payments re-queued for retry",
        )
        self.payment_retry_exhausted_counter = self._create_counter(
            name="monetization.payment.retry_exhausted",
            description="Number of retry attempts refused because the budget is spent",
        )

        # Grace period metrics
        self.grace_period_started_counter = self._create_counter(
            name="monetization.grace_period.started",
            description="Number of grace periods started",
        )
        self.grace_period_reminder_counter = self._create_counter(
            name="monetization.grace_period.reminder",
            description="Number of grace period reminders sent",
        )
        self.grace_period_expired_counter = self._create_counter(
            name="monetization.grace_period.expired",
            description="Number of grace periods that expired",
        )
        self.subscription_restored_counter = self._create_counter(
            name="monetization.subscription.restored",
            description="Number of subscriptions restored after payment",
        )

        # Conflict metrics
        self.conflict_detected_counter = self._create_counter(
            name="monetization.conflict.detected",
            description="Number of write conflicts recorded",
        )

    def _create_counter(self, name: str, description: str, unit: str = "1") -> Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    # Payment metrics
    def record_payment_created(self, payment_method: str, currency: str) -> None:
        """Record payment creation"""
        self.payment_created_counter.add(
            1, {"payment_method": payment_method, "currency": currency}
        )

    def record_transition(self, to_status: str, accepted: bool) -> None:
        """Record an applied or rejected transition"""
        attributes = {"to_status": to_status}
        if accepted:
            self.payment_transition_counter.add(1, attributes)
        else:
            self.payment_transition_rejected_counter.add(1, attributes)

    def record_retry(self, exhausted: bool) -> None:
        """Record a retry attempt"""
        if exhausted:
            self.payment_retry_exhausted_counter.add(1)
        else:
            self.payment_retry_counter.add(1)

    # Grace period metrics
    def record_grace_period_started(self, reason: str) -> None:
        self.grace_period_started_counter.add(1, {"reason": reason})

    def record_reminder_sent(self, reminder_type: str) -> None:
        self.grace_period_reminder_counter.add(1, {"reminder_type": reminder_type})

    def record_grace_period_expired(self) -> None:
        self.grace_period_expired_counter.add(1)

    def record_subscription_restored(self) -> None:
        self.subscription_restored_counter.add(1)

    # Conflict metrics
    def record_conflict(self, conflict_type: str, status: str, strategy: str) -> None:
        """Record a detected conflict and its immediate outcome"""
        self.conflict_detected_counter.add(
            1,
            {"conflict_type": conflict_type, "status": status, "strategy": strategy},
        )
