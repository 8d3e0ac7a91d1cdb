"""
Payment lifecycle integration.

Connects payment state changes with the subscription lifecycle: a completed
payment restores the holder's subscription, a failed one starts its grace
period. Used by webhook ingress and the periodic retry sweep.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from glocal.monetization.config import MonetizationConfig
from glocal.monetization.conflicts.resolver import ConflictResolver
from glocal.monetization.metrics import MonetizationMetrics
from glocal.monetization.payments.models import PaymentMethod, PaymentStatus, PaymentTransaction
from glocal.monetization.payments.state_machine import PaymentStateMachine
from glocal.monetization.persistence.client import PersistenceClient
from glocal.monetization.subscriptions.manager import SubscriptionLifecycleManager

logger = structlog.get_logger(__name__)

DEFAULT_GRACE_REASON = "payment_failed"


class PaymentLifecycleCoordinator:
    """Service for applying payment outcomes to subscription holders."""

    def __init__(
        self,
        payments: PaymentStateMachine,
        subscriptions: SubscriptionLifecycleManager,
        conflicts: ConflictResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.payments = payments
        self.subscriptions = subscriptions
        self.conflicts = conflicts
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_client(
        cls,
        client: PersistenceClient,
        config: MonetizationConfig | None = None,
        metrics: MonetizationMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "PaymentLifecycleCoordinator":
        """Wire every component against one persistence client."""
        config = config or MonetizationConfig.from_settings()
        metrics = metrics or MonetizationMetrics()
        return cls(
            payments=PaymentStateMachine(client, config.payment, metrics=metrics),
            subscriptions=SubscriptionLifecycleManager(
                client, config.grace_period, metrics=metrics, clock=clock
            ),
            conflicts=ConflictResolver(client, config.conflicts, metrics=metrics, clock=clock),
            clock=clock,
        )

    async def apply_status_update(
        self,
        transaction_id: str,
        new_status: PaymentStatus | str,
        **options: Any,
    ) -> bool:
        """
        Update a payment and propagate the outcome to its subscription holder.

        Args:
            transaction_id: Payment transaction id
            new_status: Target status
            **options: ``external_payment_id``, ``error_message``,
                ``error_code`` and ``metadata`` as accepted by
                ``PaymentStateMachine.update_payment_status``

        Returns:
            Whether the payment update was applied. Subscription side effects
            are logged on failure and do not change the result.
        """
        if not await self.payments.update_payment_status(transaction_id, new_status, **options):
            return False

        status = PaymentStatus(new_status)
        if status not in (PaymentStatus.COMPLETED, PaymentStatus.FAILED):
            return True

        payment = await self.payments.get_payment(transaction_id)
        if payment is None or not payment.artist_id:
            return True

        if status == PaymentStatus.COMPLETED:
            restored = await self.subscriptions.restore_subscription(
                payment.artist_id, transaction_id
            )
            if not restored:
                logger.error(
                    "Payment completed but subscription was not restored",
                    transaction_id=transaction_id,
                    entity_id=payment.artist_id,
                )
        else:
            reason = options.get("error_code") or DEFAULT_GRACE_REASON
            started = await self.subscriptions.start_grace_period(payment.artist_id, reason)
            if not started:
                logger.error(
                    "Payment failed but grace period was not started",
                    transaction_id=transaction_id,
                    entity_id=payment.artist_id,
                )

        return True

    async def apply_gateway_event(
        self,
        external_payment_id: str,
        payment_method: PaymentMethod | str,
        new_status: PaymentStatus | str,
        **options: Any,
    ) -> bool:
        """Apply a gateway webhook event keyed by the gateway's payment id."""
        payment = await self.payments.get_payment_by_external_id(
            external_payment_id, payment_method
        )
        if payment is None:
            logger.warning(
                "Gateway event for unknown payment",
                external_payment_id=external_payment_id,
                payment_method=str(payment_method),
            )
            return False

        options.setdefault("external_payment_id", external_payment_id)
        return await self.apply_status_update(payment.id, new_status, **options)

    async def retry_failed_payments(self, hours_ago: int | None = None) -> int:
        """
        Re-queue every retry-eligible failed payment; returns how many were re-queued.

        Payments of a holder in grace period also follow the grace retry
        policy: at most ``max_retries`` attempts, ``retry_interval_hours`` apart.
        """
        retried = 0
        for payment in await self.payments.get_failed_payments_for_retry(hours_ago):
            if not await self._grace_allows_retry(payment):
                continue
            if await self.payments.retry_payment(payment.id):
                retried += 1

        logger.info("Failed payment retry sweep finished", retried=retried)
        return retried

    async def _grace_allows_retry(self, payment: PaymentTransaction) -> bool:
        if not payment.artist_id:
            return True
        state = await self.subscriptions.get_subscription_state(payment.artist_id)
        if state is None or not state.in_grace_period:
            return True

        grace = self.subscriptions.config
        if payment.retry_count >= grace.max_retries:
            logger.info(
                "Grace period retry budget exhausted",
                transaction_id=payment.id,
                entity_id=payment.artist_id,
                retry_count=payment.retry_count,
            )
            return False

        interval = timedelta(hours=grace.retry_interval_hours)
        if payment.failed_at is not None and self._clock() - payment.failed_at < interval:
            logger.debug(
                "Grace period retry not due yet",
                transaction_id=payment.id,
                entity_id=payment.artist_id,
            )
            return False
        return True
