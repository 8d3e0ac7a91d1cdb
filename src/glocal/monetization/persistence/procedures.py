"""
SQLAlchemy implementation of the named persistence operations.

Every operation opens its own session and runs in a single transaction, so a
read-validate-write sequence is never observable as two interleaved halves.
Rows that are read and then changed are locked with ``SELECT ... FOR UPDATE``
(ignored by SQLite, which serializes writers).
"""

from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import delete, func, inspect, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from glocal.monetization.exceptions import (
    InvalidStateTransitionError,
    MonetizationError,
    PersistenceError,
    RetryBudgetExhaustedError,
    SubscriptionHolderNotFoundError,
)
from glocal.monetization.payments.models import PaymentStatus, is_valid_transition
from glocal.monetization.persistence.client import Operation
from glocal.monetization.persistence.models import (
    ConflictResolutionTable,
    NotificationTable,
    PaymentTransactionTable,
    SubscriptionHolderTable,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
Procedure = Callable[..., Awaitable[Any]]

_SUBSCRIPTION_COLUMNS = frozenset(
    {
        "subscription_status",
        "subscription_grace_period_start",
        "subscription_grace_reason",
        "subscription_expired_at",
        "subscription_restored_at",
        "subscription_last_reminder_day",
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_row(entity: Any) -> dict[str, Any]:
    """Flatten an ORM instance into a dict keyed by column name."""
    mapper = inspect(entity).mapper
    return {attr.columns[0].name: getattr(entity, attr.key) for attr in mapper.column_attrs}


class SQLAlchemyPersistenceClient:
    """
    Persistence service backed by SQLAlchemy async sessions.

    Handles:
    - Idempotent payment creation keyed on the idempotency key
    - Validated payment transitions with an append-only transition log
    - Subscription holder grace-period state
    - Notification rows and conflict resolution records
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or _utcnow
        self._procedures: dict[str, Procedure] = {
            Operation.CREATE_PAYMENT_TRANSACTION: self._create_payment_transaction,
            Operation.UPDATE_PAYMENT_STATUS: self._update_payment_status,
            Operation.RETRY_PAYMENT_TRANSACTION: self._retry_payment_transaction,
            Operation.GET_PAYMENT_TRANSACTION: self._get_payment_transaction,
            Operation.GET_PAYMENT_BY_EXTERNAL_ID: self._get_payment_by_external_id,
            Operation.GET_FAILED_PAYMENTS_FOR_RETRY: self._get_failed_payments_for_retry,
            Operation.LIST_PAYMENT_HISTORY: self._list_payment_history,
            Operation.LIST_PAYMENT_AMOUNTS: self._list_payment_amounts,
            Operation.DELETE_FAILED_PAYMENTS_BEFORE: self._delete_failed_payments_before,
            Operation.GET_SUBSCRIPTION_STATE: self._get_subscription_state,
            Operation.UPDATE_SUBSCRIPTION_STATE: self._update_subscription_state,
            Operation.LIST_SUBSCRIPTIONS_IN_GRACE_PERIOD: self._list_subscriptions_in_grace_period,
            Operation.LIST_SUBSCRIPTION_STATUSES: self._list_subscription_statuses,
            Operation.INSERT_NOTIFICATION: self._insert_notification,
            Operation.INSERT_CONFLICT_RESOLUTION: self._insert_conflict_resolution,
            Operation.LIST_PENDING_CONFLICTS: self._list_pending_conflicts,
            Operation.RESOLVE_CONFLICT: self._resolve_conflict,
            Operation.ESCALATE_CONFLICT: self._escalate_conflict,
            Operation.LIST_CONFLICTS_SINCE: self._list_conflicts_since,
        }

    @property
    def operations(self) -> frozenset[str]:
        return frozenset(self._procedures)

    async def call(self, operation: str, params: Mapping[str, Any] | None = None) -> Any:
        """Execute a named operation atomically."""
        procedure = self._procedures.get(operation)
        if procedure is None:
            raise PersistenceError(f"Unknown persistence operation: {operation}", operation)

        try:
            return await procedure(**dict(params or {}))
        except MonetizationError:
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "Persistence operation failed",
                operation=operation,
                error=str(exc),
            )
            raise PersistenceError(
                f"Persistence operation {operation} failed", operation
            ) from exc

    # ==================== Payments ====================

    async def _create_payment_transaction(
        self,
        *,
        user_id: str,
        amount: int,
        currency: str,
        payment_method: str,
        idempotency_key: str,
        artist_id: str | None = None,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> str:
        by_key = select(PaymentTransactionTable.id).where(
            PaymentTransactionTable.idempotency_key == idempotency_key
        )

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    existing_id = await session.scalar(by_key)
                    if existing_id is not None:
                        return existing_id

                    now = self._clock()
                    transaction = PaymentTransactionTable(
                        id=str(uuid4()),
                        user_id=user_id,
                        artist_id=artist_id,
                        subscription_id=subscription_id,
                        amount=amount,
                        currency=currency,
                        payment_method=payment_method,
                        status=PaymentStatus.CREATED.value,
                        state_transitions=[],
                        idempotency_key=idempotency_key,
                        retry_count=0,
                        max_retries=max_retries,
                        metadata_json=dict(metadata or {}),
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(transaction)
                return transaction.id
            except IntegrityError:
                # A concurrent caller inserted the same key between our read and write
                async with session.begin():
                    existing_id = await session.scalar(by_key)
                if existing_id is None:
                    raise
                return existing_id

    async def _update_payment_status(
        self,
        *,
        transaction_id: str,
        new_status: str,
        external_payment_id: str | None = None,
        error_message: str | None = None,
        error_code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            transaction = await session.scalar(
                select(PaymentTransactionTable)
                .where(PaymentTransactionTable.id == transaction_id)
                .with_for_update()
            )
            if transaction is None:
                return False

            current_status = transaction.status
            if not is_valid_transition(current_status, new_status):
                raise InvalidStateTransitionError(
                    f"Invalid state transition from {current_status} to {new_status}",
                    current_state=current_status,
                    requested_state=new_status,
                    transaction_id=transaction_id,
                )

            now = self._clock()
            transaction.state_transitions = [
                *(transaction.state_transitions or []),
                {
                    "from_status": current_status,
                    "to_status": new_status,
                    "timestamp": now.isoformat(),
                    "external_payment_id": external_payment_id,
                    "error_message": error_message,
                    "error_code": error_code,
                },
            ]
            transaction.previous_status = current_status
            transaction.status = new_status
            if external_payment_id is not None:
                transaction.external_payment_id = external_payment_id
            transaction.error_message = error_message
            transaction.error_code = error_code
            if metadata is not None:
                transaction.metadata_json = dict(metadata)
            transaction.updated_at = now

            if new_status == PaymentStatus.COMPLETED.value:
                transaction.completed_at = now
            elif new_status == PaymentStatus.FAILED.value:
                transaction.failed_at = now
            elif new_status == PaymentStatus.REFUNDED.value:
                transaction.refunded_at = now

        return True

    async def _retry_payment_transaction(self, *, transaction_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            transaction = await session.scalar(
                select(PaymentTransactionTable)
                .where(PaymentTransactionTable.id == transaction_id)
                .with_for_update()
            )
            if transaction is None or transaction.status != PaymentStatus.FAILED.value:
                return False

            if transaction.retry_count >= transaction.max_retries:
                raise RetryBudgetExhaustedError(
                    f"Payment {transaction_id} has exceeded retry limit",
                    transaction_id=transaction_id,
                    retry_count=transaction.retry_count,
                    max_retries=transaction.max_retries,
                )

            now = self._clock()
            transaction.state_transitions = [
                *(transaction.state_transitions or []),
                {
                    "from_status": transaction.status,
                    "to_status": PaymentStatus.PENDING.value,
                    "timestamp": now.isoformat(),
                    "external_payment_id": None,
                    "error_message": None,
                    "error_code": None,
                },
            ]
            transaction.previous_status = transaction.status
            transaction.status = PaymentStatus.PENDING.value
            transaction.retry_count = transaction.retry_count + 1
            transaction.error_message = None
            transaction.error_code = None
            transaction.updated_at = now

        return True

    async def _get_payment_transaction(self, *, transaction_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            transaction = await session.get(PaymentTransactionTable, transaction_id)
            return _as_row(transaction) if transaction is not None else None

    async def _get_payment_by_external_id(
        self, *, external_payment_id: str, payment_method: str
    ) -> list[dict[str, Any]]:
        stmt = (
            select(PaymentTransactionTable)
            .where(
                PaymentTransactionTable.external_payment_id == external_payment_id,
                PaymentTransactionTable.payment_method == payment_method,
            )
            .order_by(PaymentTransactionTable.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_as_row(row) for row in result]

    async def _get_failed_payments_for_retry(self, *, hours_ago: int = 1) -> list[dict[str, Any]]:
        cutoff = self._clock() - timedelta(hours=hours_ago)
        stmt = (
            select(PaymentTransactionTable)
            .where(
                PaymentTransactionTable.status == PaymentStatus.FAILED.value,
                PaymentTransactionTable.retry_count < PaymentTransactionTable.max_retries,
                PaymentTransactionTable.failed_at.is_not(None),
                PaymentTransactionTable.failed_at <= cutoff,
            )
            .order_by(PaymentTransactionTable.failed_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_as_row(row) for row in result]

    async def _list_payment_history(
        self, *, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[dict[str, Any]]:
        stmt = (
            select(PaymentTransactionTable)
            .where(PaymentTransactionTable.user_id == user_id)
            .order_by(PaymentTransactionTable.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_as_row(row) for row in result]

    async def _list_payment_amounts(self, *, user_id: str | None = None) -> list[dict[str, Any]]:
        stmt = select(PaymentTransactionTable.status, PaymentTransactionTable.amount)
        if user_id:
            stmt = stmt.where(PaymentTransactionTable.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [{"status": status, "amount": amount} for status, amount in result.all()]

    async def _delete_failed_payments_before(self, *, days_old: int = 30) -> int:
        cutoff = self._clock() - timedelta(days=days_old)
        stmt = delete(PaymentTransactionTable).where(
            PaymentTransactionTable.status == PaymentStatus.FAILED.value,
            PaymentTransactionTable.created_at < cutoff,
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount or 0

    # ==================== Subscription holders ====================

    async def _get_subscription_state(self, *, entity_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            holder = await session.get(SubscriptionHolderTable, entity_id)
            return _as_row(holder) if holder is not None else None

    async def _update_subscription_state(
        self, *, entity_id: str, values: Mapping[str, Any]
    ) -> bool:
        unknown = set(values) - _SUBSCRIPTION_COLUMNS
        if unknown:
            raise PersistenceError(
                "Refusing to update unknown subscription columns",
                Operation.UPDATE_SUBSCRIPTION_STATE,
                context={"columns": sorted(unknown)},
            )

        stmt = (
            update(SubscriptionHolderTable)
            .where(SubscriptionHolderTable.id == entity_id)
            .values(**values, updated_at=self._clock())
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            if not result.rowcount:
                raise SubscriptionHolderNotFoundError(
                    f"Subscription holder {entity_id} not found", entity_id=entity_id
                )
        return True

    async def _list_subscriptions_in_grace_period(self) -> list[dict[str, Any]]:
        stmt = (
            select(SubscriptionHolderTable)
            .where(
                SubscriptionHolderTable.subscription_status == "grace_period",
                SubscriptionHolderTable.subscription_grace_period_start.is_not(None),
            )
            .order_by(SubscriptionHolderTable.subscription_grace_period_start.asc())
        )
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_as_row(row) for row in result]

    async def _list_subscription_statuses(self) -> list[dict[str, Any]]:
        stmt = select(
            SubscriptionHolderTable.subscription_status, func.count(SubscriptionHolderTable.id)
        ).group_by(SubscriptionHolderTable.subscription_status)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                {"subscription_status": status, "count": count} for status, count in result.all()
            ]

    # ==================== Notifications ====================

    async def _insert_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> str:
        notification = NotificationTable(
            id=str(uuid4()),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=dict(data or {}),
            created_at=self._clock(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(notification)
        return notification.id

    # ==================== Conflicts ====================

    async def _insert_conflict_resolution(
        self,
        *,
        id: str,
        table_name: str,
        record_id: str,
        conflict_type: str,
        conflict_data: dict[str, Any],
        resolution_strategy: str,
        status: str,
        resolved_by: str | None = None,
        resolved_at: datetime | None = None,
        resolution_data: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> str:
        conflict = ConflictResolutionTable(
            id=id,
            table_name=table_name,
            record_id=record_id,
            conflict_type=conflict_type,
            conflict_data=conflict_data,
            resolution_strategy=resolution_strategy,
            status=status,
            resolved_by=resolved_by,
            resolved_at=resolved_at,
            resolution_data=resolution_data,
            created_at=created_at or self._clock(),
        )
        async with self._session_factory() as session, session.begin():
            session.add(conflict)
        return conflict.id

    async def _list_pending_conflicts(
        self, *, table_name: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        stmt = select(ConflictResolutionTable).where(ConflictResolutionTable.status == "pending")
        if table_name:
            stmt = stmt.where(ConflictResolutionTable.table_name == table_name)
        stmt = stmt.order_by(ConflictResolutionTable.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_as_row(row) for row in result]

    async def _resolve_conflict(
        self, *, conflict_id: str, resolved_by: str, resolution_data: dict[str, Any]
    ) -> bool:
        stmt = (
            update(ConflictResolutionTable)
            .where(
                ConflictResolutionTable.id == conflict_id,
                ConflictResolutionTable.status.in_(("pending", "escalated")),
            )
            .values(
                status="resolved",
                resolved_by=resolved_by,
                resolved_at=self._clock(),
                resolution_data=resolution_data,
            )
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return bool(result.rowcount)

    async def _escalate_conflict(self, *, conflict_id: str, reason: str) -> bool:
        stmt = (
            update(ConflictResolutionTable)
            .where(
                ConflictResolutionTable.id == conflict_id,
                ConflictResolutionTable.status == "pending",
            )
            .values(status="escalated", escalation_reason=reason, escalated_at=self._clock())
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return bool(result.rowcount)

    async def _list_conflicts_since(self, *, days_back: int = 7) -> list[dict[str, Any]]:
        cutoff = self._clock() - timedelta(days=days_back)
        stmt = select(
            ConflictResolutionTable.status,
            ConflictResolutionTable.created_at,
            ConflictResolutionTable.resolved_at,
        ).where(ConflictResolutionTable.created_at >= cutoff)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                {"status": status, "created_at": created_at, "resolved_at": resolved_at}
                for status, created_at, resolved_at in result.all()
            ]
