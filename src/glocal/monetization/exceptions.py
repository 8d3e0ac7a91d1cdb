"""
Monetization core exceptions.

Custom exceptions for payment, subscription and persistence operations.
Each error carries a machine-readable code, context and a recovery hint.
"""

from typing import Any


class MonetizationError(Exception):
    """
    Base monetization error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        status_code: HTTP status code a collaborator may map this error to
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "MONETIZATION_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class PaymentValidationError(MonetizationError):
    """Payment request rejected before any write."""

    def __init__(self, message: str, field: str | None = None, value: Any = None) -> None:
        context: dict[str, Any] = {}
        if field:
            context["field"] = field
            context["value"] = value

        super().__init__(
            message,
            "PAYMENT_VALIDATION_ERROR",
            status_code=422,
            context=context,
            recovery_hint="Correct the payment request and submit it again",
        )


class InvalidStateTransitionError(MonetizationError):
    """Invalid payment state transition error."""

    def __init__(
        self,
        message: str,
        current_state: str | None,
        requested_state: str,
        transaction_id: str | None = None,
    ) -> None:
        context: dict[str, Any] = {
            "current_state": current_state,
            "requested_state": requested_state,
        }
        if transaction_id:
            context["transaction_id"] = transaction_id

        super().__init__(
            message,
            "INVALID_PAYMENT_STATE",
            status_code=409,
            context=context,
            recovery_hint=(
                f"Cannot transition from {current_state} to {requested_state}. "
                "Check payment status first."
            ),
        )


class RetryBudgetExhaustedError(MonetizationError):
    """A failed payment reached its retry limit."""

    def __init__(self, message: str, transaction_id: str, retry_count: int, max_retries: int):
        super().__init__(
            message,
            "RETRY_BUDGET_EXHAUSTED",
            status_code=409,
            context={
                "transaction_id": transaction_id,
                "retry_count": retry_count,
                "max_retries": max_retries,
            },
            recovery_hint="Escalate to customer support; the payment will not be retried again",
        )


class PersistenceError(MonetizationError):
    """The persistence service is unreachable or rejected the operation."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(context or {})
        if operation:
            merged["operation"] = operation

        super().__init__(
            message,
            "PERSISTENCE_ERROR",
            status_code=503,
            context=merged,
            recovery_hint="The action did not take effect; try again",
        )


class DataIntegrityError(PersistenceError):
    """A persisted row could not be mapped into a domain model."""

    def __init__(self, message: str, field: str, value: Any) -> None:
        super().__init__(message, context={"field": field, "value": value})
        self.error_code = "DATA_INTEGRITY_ERROR"
        self.status_code = 500
        self.recovery_hint = "Inspect the stored row; it holds a value outside the known domain"


class SubscriptionError(MonetizationError):
    """Subscription lifecycle errors."""

    def __init__(self, message: str, entity_id: str | None = None) -> None:
        context = {}
        if entity_id:
            context["entity_id"] = entity_id

        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Verify the subscription holder exists",
        )


class SubscriptionHolderNotFoundError(SubscriptionError):
    """Subscription holder not found error."""

    def __init__(self, message: str, entity_id: str | None = None) -> None:
        super().__init__(message, entity_id=entity_id)
        self.error_code = "SUBSCRIPTION_HOLDER_NOT_FOUND"
        self.status_code = 404
