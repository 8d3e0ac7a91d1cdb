"""
Payment state machine.

Owns the ``PaymentTransaction`` lifecycle. Every write goes through a single
named persistence operation, which validates the transition against the same
table as ``is_valid_transition``.
"""

import secrets
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from glocal.monetization.config import PaymentConfig
from glocal.monetization.exceptions import (
    InvalidStateTransitionError,
    MonetizationError,
    PaymentValidationError,
    PersistenceError,
    RetryBudgetExhaustedError,
)
from glocal.monetization.mappers import map_payment_transaction
from glocal.monetization.metrics import MonetizationMetrics
from glocal.monetization.payments.models import (
    CreatePaymentRequest,
    PaymentMethod,
    PaymentStats,
    PaymentStatus,
    PaymentTransaction,
    is_valid_transition,
)
from glocal.monetization.persistence.client import Operation, PersistenceClient

logger = structlog.get_logger(__name__)

# Failures surfaced as False / None / [] at the boundary of public methods
_BOUNDARY_ERRORS = (MonetizationError, SQLAlchemyError)


def generate_idempotency_key() -> str:
    """16 random bytes, hex encoded."""
    return secrets.token_hex(16)


class PaymentStateMachine:
    """
    Service for managing payment transaction states and transitions.

    Handles:
    - Idempotent payment creation
    - Validated, logged state transitions
    - Retry bookkeeping for failed payments
    - Lookups used by webhook ingress and schedulers
    """

    def __init__(
        self,
        client: PersistenceClient,
        config: PaymentConfig | None = None,
        metrics: MonetizationMetrics | None = None,
    ) -> None:
        self.client = client
        self.config = config or PaymentConfig()
        self.metrics = metrics or MonetizationMetrics()

    # ==================== Creation ====================

    async def create_payment(self, request: CreatePaymentRequest | dict[str, Any]) -> str:
        """
        Create a new payment transaction.

        A second call with the same idempotency key returns the id of the
        transaction created by the first call.

        Args:
            request: Payment parameters (model or plain mapping)

        Returns:
            Transaction id

        Raises:
            PaymentValidationError: The request is invalid; nothing was written
            PersistenceError: The store rejected or could not perform the write
        """
        if not isinstance(request, CreatePaymentRequest):
            try:
                request = CreatePaymentRequest.model_validate(request)
            except ValidationError as exc:
                first = exc.errors()[0]
                field = ".".join(str(part) for part in first["loc"])
                raise PaymentValidationError(
                    f"Invalid payment request: {field}: {first['msg']}",
                    field=field,
                    value=first.get("input"),
                ) from exc

        idempotency_key = request.idempotency_key or generate_idempotency_key()
        currency = request.currency or self.config.default_currency

        try:
            transaction_id = await self.client.call(
                Operation.CREATE_PAYMENT_TRANSACTION,
                {
                    "user_id": request.user_id,
                    "artist_id": request.artist_id,
                    "subscription_id": request.subscription_id,
                    "amount": request.amount,
                    "currency": currency,
                    "payment_method": request.payment_method.value,
                    "idempotency_key": idempotency_key,
                    "metadata": request.metadata,
                    "max_retries": self.config.max_retries,
                },
            )
        except PersistenceError:
            logger.error(
                "Error creating payment transaction",
                user_id=request.user_id,
                idempotency_key=idempotency_key,
            )
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "Error creating payment transaction",
                user_id=request.user_id,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            raise PersistenceError(
                "Failed to create payment transaction", Operation.CREATE_PAYMENT_TRANSACTION
            ) from exc

        self.metrics.record_payment_created(request.payment_method.value, currency)
        logger.info(
            "Payment transaction created",
            transaction_id=transaction_id,
            user_id=request.user_id,
            amount=request.amount,
            currency=currency,
        )
        return str(transaction_id)

    # ==================== Transitions ====================

    async def update_payment_status(
        self,
        transaction_id: str,
        new_status: PaymentStatus | str,
        *,
        external_payment_id: str | None = None,
        error_message: str | None = None,
        error_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Update payment status with validation.

        Returns:
            True when the transition was applied, False when the transaction
            is unknown, the transition is not allowed, or the write failed.
        """
        try:
            status = PaymentStatus(new_status)
        except ValueError:
            logger.warning(
                "Rejected unknown payment status",
                transaction_id=transaction_id,
                new_status=new_status,
            )
            return False

        try:
            applied = await self.client.call(
                Operation.UPDATE_PAYMENT_STATUS,
                {
                    "transaction_id": transaction_id,
                    "new_status": status.value,
                    "external_payment_id": external_payment_id,
                    "error_message": error_message,
                    "error_code": error_code,
                    "metadata": metadata,
                },
            )
        except InvalidStateTransitionError as exc:
            self.metrics.record_transition(status.value, accepted=False)
            logger.warning(
                "Rejected payment state transition",
                transaction_id=transaction_id,
                current_status=exc.context.get("current_state"),
                new_status=status.value,
            )
            return False
        except _BOUNDARY_ERRORS as exc:
            logger.error(
                "Error updating payment status",
                transaction_id=transaction_id,
                new_status=status.value,
                error=str(exc),
            )
            return False

        if applied is not True:
            logger.warning("Payment transaction not found", transaction_id=transaction_id)
            return False

        self.metrics.record_transition(status.value, accepted=True)
        logger.info(
            "Payment status updated",
            transaction_id=transaction_id,
            new_status=status.value,
        )
        return True

    def is_valid_transition(
        self, current_status: PaymentStatus | str, new_status: PaymentStatus | str
    ) -> bool:
        """Validate state transition without touching the store."""
        return is_valid_transition(current_status, new_status)

    # ==================== Lookups ====================

    async def get_payment(self, transaction_id: str) -> PaymentTransaction | None:
        """Get payment transaction by ID."""
        try:
            row = await self.client.call(
                Operation.GET_PAYMENT_TRANSACTION, {"transaction_id": transaction_id}
            )
            if not row:
                return None
            return map_payment_transaction(row, strict=self.config.strict_row_validation)
        except _BOUNDARY_ERRORS as exc:
            logger.error("Error fetching payment", transaction_id=transaction_id, error=str(exc))
            return None

    async def get_payment_by_external_id(
        self, external_payment_id: str, payment_method: PaymentMethod | str
    ) -> PaymentTransaction | None:
        """Get payment by the gateway's own payment id."""
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            return None

        try:
            rows = await self.client.call(
                Operation.GET_PAYMENT_BY_EXTERNAL_ID,
                {"external_payment_id": external_payment_id, "payment_method": method.value},
            )
            if not rows:
                return None
            return map_payment_transaction(rows[0], strict=self.config.strict_row_validation)
        except _BOUNDARY_ERRORS as exc:
            logger.error(
                "Error fetching payment by external id",
                external_payment_id=external_payment_id,
                payment_method=method.value,
                error=str(exc),
            )
            return None

    async def get_payment_history(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[PaymentTransaction]:
        """Get payment history for user, newest first."""
        try:
            rows = await self.client.call(
                Operation.LIST_PAYMENT_HISTORY,
                {"user_id": user_id, "limit": limit, "offset": offset},
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Error fetching payment history", user_id=user_id, error=str(exc))
            return []
        return self._map_rows(rows or [])

    async def get_payment_stats(self, user_id: str | None = None) -> PaymentStats:
        """Get payment statistics, optionally for one user."""
        try:
            rows = await self.client.call(Operation.LIST_PAYMENT_AMOUNTS, {"user_id": user_id})
        except _BOUNDARY_ERRORS as exc:
            logger.error("Error fetching payment stats", user_id=user_id, error=str(exc))
            return PaymentStats()

        stats = PaymentStats()
        for row in rows or []:
            stats.total += 1
            stats.total_amount += int(row.get("amount") or 0)
            status = row.get("status")
            if status == PaymentStatus.COMPLETED.value:
                stats.completed += 1
            elif status == PaymentStatus.FAILED.value:
                stats.failed += 1
            elif status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
                stats.pending += 1
        return stats

    # ==================== Retry ====================

    async def get_failed_payments_for_retry(
        self, hours_ago: int | None = None
    ) -> list[PaymentTransaction]:
        """
        Get failed payments eligible for retry.

        Eligible means: failed at least ``hours_ago`` hours ago and with retry
        budget left. Scheduling the actual re-attempt is up to the caller.
        """
        window = self.config.retry_window_hours if hours_ago is None else hours_ago
        try:
            rows = await self.client.call(
                Operation.GET_FAILED_PAYMENTS_FOR_RETRY, {"hours_ago": window}
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Error fetching failed payments for retry", error=str(exc))
            return []
        return self._map_rows(rows or [])

    async def retry_payment(self, transaction_id: str) -> bool:
        """
        Retry failed payment.

        Increments ``retry_count`` and moves the transaction back to
        ``pending`` in one atomic operation. A pending row with a non-zero
        retry count is therefore a retry.
        """
        payment = await self.get_payment(transaction_id)
        if payment is None or payment.status != PaymentStatus.FAILED:
            return False

        if payment.retry_budget_exhausted:
            self.metrics.record_retry(exhausted=True)
            logger.warning(
                "Payment has exceeded retry limit",
                transaction_id=transaction_id,
                retry_count=payment.retry_count,
                max_retries=payment.max_retries,
            )
            return False

        try:
            applied = await self.client.call(
                Operation.RETRY_PAYMENT_TRANSACTION, {"transaction_id": transaction_id}
            )
        except RetryBudgetExhaustedError as exc:
            self.metrics.record_retry(exhausted=True)
            logger.warning(
                "Payment has exceeded retry limit",
                transaction_id=transaction_id,
                retry_count=exc.context.get("retry_count"),
                max_retries=exc.context.get("max_retries"),
            )
            return False
        except _BOUNDARY_ERRORS as exc:
            logger.error(
                "Error updating retry count", transaction_id=transaction_id, error=str(exc)
            )
            return False

        if applied is not True:
            return False

        self.metrics.record_retry(exhausted=False)
        logger.info(
            "Payment queued for retry",
            transaction_id=transaction_id,
            retry_count=payment.retry_count + 1,
        )
        return True

    # ==================== Retention ====================

    async def cleanup_old_failed_payments(self, days_old: int | None = None) -> int:
        """Delete failed payments created more than ``days_old`` days ago."""
        days = self.config.failed_payment_retention_days if days_old is None else days_old
        try:
            deleted = await self.client.call(
                Operation.DELETE_FAILED_PAYMENTS_BEFORE, {"days_old": days}
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Error cleaning up old failed payments", days_old=days, error=str(exc))
            return 0

        logger.info("Old failed payments removed", days_old=days, deleted=deleted)
        return int(deleted or 0)

    def _map_rows(self, rows: list[dict[str, Any]]) -> list[PaymentTransaction]:
        payments = []
        for row in rows:
            try:
                payments.append(
                    map_payment_transaction(row, strict=self.config.strict_row_validation)
                )
            except MonetizationError as exc:
                logger.error(
                    "Skipping malformed payment row",
                    transaction_id=row.get("id"),
                    error=str(exc),
                )
        return payments
