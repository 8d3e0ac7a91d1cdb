"""
Contract of the persistence service.

The core reaches the store only through named operations. Each operation is
atomic on the store side and returns a row (dict), a list of rows, a scalar,
or raises. Failures of the store itself surface as ``PersistenceError``.
"""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable


class Operation:
    """Named persistence operations."""

    # Payments
    CREATE_PAYMENT_TRANSACTION = "create_payment_transaction"
    UPDATE_PAYMENT_STATUS = "update_payment_status"
    RETRY_PAYMENT_TRANSACTION = "retry_payment_transaction"
    GET_PAYMENT_TRANSACTION = "get_payment_transaction"
    GET_PAYMENT_BY_EXTERNAL_ID = "get_payment_by_external_id"
    GET_FAILED_PAYMENTS_FOR_RETRY = "get_failed_payments_for_retry"
    LIST_PAYMENT_HISTORY = "list_payment_history"
    LIST_PAYMENT_AMOUNTS = "list_payment_amounts"
    DELETE_FAILED_PAYMENTS_BEFORE = "delete_failed_payments_before"

    # Subscription holders
    GET_SUBSCRIPTION_STATE = "get_subscription_state"
    UPDATE_SUBSCRIPTION_STATE = "update_subscription_state"
    LIST_SUBSCRIPTIONS_IN_GRACE_PERIOD = "list_subscriptions_in_grace_period"
    LIST_SUBSCRIPTION_STATUSES = "list_subscription_statuses"

    # Notifications
    INSERT_NOTIFICATION = "insert_notification"

    # Conflicts
    INSERT_CONFLICT_RESOLUTION = "insert_conflict_resolution"
    LIST_PENDING_CONFLICTS = "list_pending_conflicts"
    RESOLVE_CONFLICT = "resolve_conflict"
    ESCALATE_CONFLICT = "escalate_conflict"
    LIST_CONFLICTS_SINCE = "list_conflicts_since"


@runtime_checkable
class PersistenceClient(Protocol):
    """Anything that can execute a named, atomic persistence operation."""

    async def call(self, operation: str, params: Mapping[str, Any] | None = None) -> Any:
        """Execute ``operation`` with ``params`` and return its result."""
        ...  # pragma: no cover - protocol definition
