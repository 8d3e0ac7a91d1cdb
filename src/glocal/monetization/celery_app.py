"""
Celery application for the monetization sweeps.
"""

from typing import Any

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from kombu import Queue

from glocal.monetization.logging import setup_logging
from glocal.monetization.settings import settings

# Create Celery application
celery_app = Celery(
    "glocal_monetization",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["glocal.monetization.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    # Task routing
    task_routes={
        "monetization.*": {"queue": "default"},
    },
    # Queue configuration
    task_default_queue="default",
    task_queues=(Queue("default", routing_key="default"),),
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task result settings
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


@celery_setup_logging.connect  # type: ignore[misc]
def configure_worker_logging(**kwargs: Any) -> None:
    """Use the structlog configuration instead of Celery's own logging setup."""
    setup_logging()


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the periodic sweeps."""
    from glocal.monetization.tasks import (
        cleanup_failed_payments_task,
        process_grace_periods_task,
        retry_failed_payments_task,
    )

    # Grace periods - reminders and expiry
    sender.add_periodic_task(
        float(settings.celery.grace_period_sweep_minutes * 60),
        process_grace_periods_task.s(),
        name="monetization-process-grace-periods",
    )

    # Failed payments - re-queue retry-eligible transactions
    sender.add_periodic_task(
        float(settings.celery.retry_sweep_minutes * 60),
        retry_failed_payments_task.s(),
        name="monetization-retry-failed-payments",
    )

    # Failed payments - retention
    sender.add_periodic_task(
        float(settings.celery.cleanup_sweep_hours * 3600),
        cleanup_failed_payments_task.s(),
        name="monetization-cleanup-failed-payments",
    )
