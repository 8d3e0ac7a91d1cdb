"""
Subscription lifecycle notifications.

Titles and messages are rendered from a template registry and stored as
notification rows for the subscription holder.
"""

from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError

from glocal.monetization.exceptions import MonetizationError
from glocal.monetization.persistence.client import Operation, PersistenceClient

logger = structlog.get_logger(__name__)

SUBSCRIPTION_UPDATE = "subscription_update"
SUBSCRIPTION_REMINDER = "subscription_reminder"

# Notification template registry
NOTIFICATION_TEMPLATES: dict[str, dict[str, str]] = {
    # Lifecycle events
    "started": {
        "type": SUBSCRIPTION_UPDATE,
        "title": "Payment Failed - Grace Period Started",
        "message": (
            "Your subscription payment failed. "
            "You have {grace_period_days} days to update your payment method."
        ),
    },
    "expired": {
        "type": SUBSCRIPTION_UPDATE,
        "title": "Subscription Expired",
        "message": (
            "Your subscription has expired due to failed payment. "
            "Your profile is now inactive."
        ),
    },
    "restored": {
        "type": SUBSCRIPTION_UPDATE,
        "title": "Subscription Restored",
        "message": "Your subscription has been restored. Your profile is now active again.",
    },
    # Reminders
    "reminder_first": {
        "type": SUBSCRIPTION_REMINDER,
        "title": "Payment Reminder - Update Required",
        "message": (
            "Your subscription payment failed. "
            "You have {days_remaining} days left to update your payment method."
        ),
    },
    "reminder_final": {
        "type": SUBSCRIPTION_REMINDER,
        "title": "Final Warning - Payment Required",
        "message": (
            "This is your final warning. Your profile will become inactive "
            "tomorrow if you don't update your payment method."
        ),
    },
}


def render_notification(kind: str, context: dict[str, Any]) -> tuple[str, str, str]:
    """
    Render notification template with context data.

    Returns:
        Tuple of (notification_type, title, message)
    """
    if kind not in NOTIFICATION_TEMPLATES:
        raise ValueError(f"Unknown notification template: {kind}")

    template = NOTIFICATION_TEMPLATES[kind]
    return (
        template["type"],
        template["title"].format(**context),
        template["message"].format(**context),
    )


class NotificationDispatcher:
    """Fire-and-forget notification writer."""

    def __init__(self, client: PersistenceClient, grace_period_days: int = 7) -> None:
        self.client = client
        self.grace_period_days = grace_period_days

    async def send(self, entity_id: str, kind: str, **context: Any) -> bool:
        """
        Store a notification for ``entity_id``.

        ``context`` is used to render the template and is stored as the
        notification payload. Failures are logged and reported as False.
        """
        render_context = {"grace_period_days": self.grace_period_days, **context}
        try:
            notification_type, title, message = render_notification(kind, render_context)
        except (KeyError, ValueError) as exc:
            logger.error(
                "Failed to render notification",
                entity_id=entity_id,
                kind=kind,
                error=str(exc),
            )
            return False

        try:
            await self.client.call(
                Operation.INSERT_NOTIFICATION,
                {
                    "user_id": entity_id,
                    "type": notification_type,
                    "title": title,
                    "message": message,
                    "data": to_jsonable_python(context, fallback=str),
                },
            )
        except (MonetizationError, SQLAlchemyError) as exc:
            logger.error(
                "Failed to send notification",
                entity_id=entity_id,
                kind=kind,
                error=str(exc),
            )
            return False

        logger.debug("Notification sent", entity_id=entity_id, kind=kind)
        return True
