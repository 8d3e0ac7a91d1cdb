"""
Database tables behind the named persistence operations.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from glocal.monetization.db import Base, TimestampMixin


def _uuid_str() -> str:
    return str(uuid4())


class PaymentTransactionTable(TimestampMixin, Base):
    """One row per attempted payment."""

    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Amount in smallest currency unit (paise/cents)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created")
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    state_transitions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_payment_transactions_user_id", "user_id"),
        Index("idx_payment_transactions_artist_id", "artist_id"),
        Index("idx_payment_transactions_status", "status"),
        Index(
            "idx_payment_transactions_external_payment_id",
            "external_payment_id",
            "payment_method",
        ),
        Index("idx_payment_transactions_created_at", "created_at"),
    )


class SubscriptionHolderTable(TimestampMixin, Base):
    """Grace-period state of a subscribable entity. Rows are created elsewhere."""

    __tablename__ = "subscription_holders"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    subscription_status: Mapped[str] = mapped_column(String(20), nullable=False, default="trial")
    subscription_grace_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_grace_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    subscription_expired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_restored_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_last_reminder_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("idx_subscription_holders_status", "subscription_status"),)


class NotificationTable(Base):
    """Notification rows written by the dispatch sink."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_notifications_user_id", "user_id"),)


class ConflictResolutionTable(Base):
    """Audit trail of detected write conflicts."""

    __tablename__ = "conflict_resolutions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    conflict_type: Mapped[str] = mapped_column(String(20), nullable=False)
    conflict_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    resolution_strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_conflict_resolutions_status", "status", "table_name"),
        Index("idx_conflict_resolutions_created_at", "created_at"),
    )


__all__ = [
    "PaymentTransactionTable",
    "SubscriptionHolderTable",
    "NotificationTable",
    "ConflictResolutionTable",
]
