"""
Celery tasks for the periodic monetization sweeps.
"""

from typing import Any

import structlog

from glocal.monetization.celery_app import celery_app
from glocal.monetization.integration import PaymentLifecycleCoordinator
from glocal.monetization.logging import bind_sweep_context
from glocal.monetization.runtime import run_with_coordinator

logger = structlog.get_logger(__name__)


async def process_grace_periods(coordinator: PaymentLifecycleCoordinator) -> dict[str, Any]:
    result = await coordinator.subscriptions.process_grace_period_reminders()
    return result.model_dump()


async def retry_failed_payments(
    coordinator: PaymentLifecycleCoordinator, hours_ago: int | None = None
) -> dict[str, Any]:
    return {"retried": await coordinator.retry_failed_payments(hours_ago)}


async def cleanup_failed_payments(
    coordinator: PaymentLifecycleCoordinator, days_old: int | None = None
) -> dict[str, Any]:
    return {"deleted": await coordinator.payments.cleanup_old_failed_payments(days_old)}


@celery_app.task(name="monetization.process_grace_periods")
def process_grace_periods_task() -> dict[str, Any]:
    """Periodic task sending grace period reminders and expiring overdue holders."""
    bind_sweep_context("process_grace_periods")
    result = run_with_coordinator(process_grace_periods)
    logger.info("Grace period task finished", **result)
    return result


@celery_app.task(name="monetization.retry_failed_payments")
def retry_failed_payments_task(hours_ago: int | None = None) -> dict[str, Any]:
    """Periodic task re-queueing retry-eligible failed payments."""
    bind_sweep_context("retry_failed_payments", hours_ago=hours_ago)
    result = run_with_coordinator(lambda c: retry_failed_payments(c, hours_ago))
    logger.info("Payment retry task finished", **result)
    return result


@celery_app.task(name="monetization.cleanup_failed_payments")
def cleanup_failed_payments_task(days_old: int | None = None) -> dict[str, Any]:
    """Periodic task removing failed payments past retention."""
    bind_sweep_context("cleanup_failed_payments", days_old=days_old)
    result = run_with_coordinator(lambda c: cleanup_failed_payments(c, days_old))
    logger.info("Failed payment cleanup task finished", **result)
    return result


__all__ = [
    "cleanup_failed_payments_task",
    "process_grace_periods_task",
    "retry_failed_payments_task",
]
