"""
Data mappers for the monetization domain.

Transforms untyped persistence rows into typed domain models. Enum columns
holding values outside the known domain are rejected with
``DataIntegrityError`` in strict mode; in lenient mode they fall back to a
safe default and a warning is logged.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

import structlog

from glocal.monetization.conflicts.models import (
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    ResolutionStrategy,
)
from glocal.monetization.exceptions import DataIntegrityError
from glocal.monetization.payments.models import (
    PaymentMethod,
    PaymentStateTransition,
    PaymentStatus,
    PaymentTransaction,
)
from glocal.monetization.subscriptions.models import SubscriptionState, SubscriptionStatus

logger = structlog.get_logger(__name__)

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], value: Any, *, field: str, default: E, strict: bool) -> E:
    """Map a raw column value onto ``enum_cls``."""
    try:
        return enum_cls(value)
    except ValueError:
        if strict:
            raise DataIntegrityError(
                f"Unknown {field} value {value!r}", field=field, value=value
            ) from None
        logger.warning(
            "Unknown enum value replaced by default",
            field=field,
            value=value,
            default=default.value,
        )
        return default


def as_utc(value: Any) -> datetime | None:
    """Parse a stored timestamp; naive values are read as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise DataIntegrityError("Unparseable timestamp", "timestamp", value) from None
    if not isinstance(value, datetime):
        raise DataIntegrityError("Timestamp column holds a non-datetime value", "timestamp", value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def map_state_transition(
    entry: Mapping[str, Any], *, strict: bool = True
) -> PaymentStateTransition:
    """Map one transition log entry."""
    return PaymentStateTransition(
        from_status=coerce_enum(
            PaymentStatus,
            entry.get("from_status"),
            field="from_status",
            default=PaymentStatus.CREATED,
            strict=strict,
        ),
        to_status=coerce_enum(
            PaymentStatus,
            entry.get("to_status"),
            field="to_status",
            default=PaymentStatus.CREATED,
            strict=strict,
        ),
        timestamp=as_utc(entry.get("timestamp")) or datetime.now(UTC),
        external_payment_id=_optional_str(entry.get("external_payment_id")),
        error_message=_optional_str(entry.get("error_message")),
        error_code=_optional_str(entry.get("error_code")),
    )


def map_payment_transaction(row: Mapping[str, Any], *, strict: bool = True) -> PaymentTransaction:
    """Map a ``payment_transactions`` row into a ``PaymentTransaction``."""
    previous_status = row.get("previous_status")
    transitions = row.get("state_transitions")
    now = datetime.now(UTC)

    return PaymentTransaction(
        id=str(row.get("id") or ""),
        user_id=str(row.get("user_id") or ""),
        artist_id=_optional_str(row.get("artist_id")),
        subscription_id=_optional_str(row.get("subscription_id")),
        amount=int(row.get("amount") or 0),
        currency=str(row.get("currency") or ""),
        payment_method=coerce_enum(
            PaymentMethod,
            row.get("payment_method"),
            field="payment_method",
            default=PaymentMethod.RAZORPAY,
            strict=strict,
        ),
        status=coerce_enum(
            PaymentStatus,
            row.get("status"),
            field="status",
            default=PaymentStatus.CREATED,
            strict=strict,
        ),
        previous_status=(
            coerce_enum(
                PaymentStatus,
                previous_status,
                field="previous_status",
                default=PaymentStatus.CREATED,
                strict=strict,
            )
            if previous_status
            else None
        ),
        state_transitions=[
            map_state_transition(entry, strict=strict)
            for entry in (transitions if isinstance(transitions, list) else [])
            if isinstance(entry, Mapping)
        ],
        external_payment_id=_optional_str(row.get("external_payment_id")),
        external_order_id=_optional_str(row.get("external_order_id")),
        external_subscription_id=_optional_str(row.get("external_subscription_id")),
        idempotency_key=str(row.get("idempotency_key") or ""),
        retry_count=int(row.get("retry_count") or 0),
        max_retries=int(row["max_retries"]) if row.get("max_retries") is not None else 3,
        created_at=as_utc(row.get("created_at")) or now,
        updated_at=as_utc(row.get("updated_at")) or now,
        completed_at=as_utc(row.get("completed_at")),
        failed_at=as_utc(row.get("failed_at")),
        refunded_at=as_utc(row.get("refunded_at")),
        metadata=_as_dict(row.get("metadata")),
        error_message=_optional_str(row.get("error_message")),
        error_code=_optional_str(row.get("error_code")),
    )


def map_subscription_state(row: Mapping[str, Any], *, strict: bool = True) -> SubscriptionState:
    """Map a ``subscription_holders`` row into a ``SubscriptionState``."""
    return SubscriptionState(
        entity_id=str(row.get("id") or ""),
        subscription_status=coerce_enum(
            SubscriptionStatus,
            row.get("subscription_status"),
            field="subscription_status",
            default=SubscriptionStatus.EXPIRED,
            strict=strict,
        ),
        grace_period_start=as_utc(row.get("subscription_grace_period_start")),
        grace_reason=_optional_str(row.get("subscription_grace_reason")),
        expired_at=as_utc(row.get("subscription_expired_at")),
        restored_at=as_utc(row.get("subscription_restored_at")),
        last_reminder_day=_optional_int(row.get("subscription_last_reminder_day")),
    )


def map_conflict_resolution(row: Mapping[str, Any], *, strict: bool = True) -> ConflictResolution:
    """Map a ``conflict_resolutions`` row into a ``ConflictResolution``."""
    resolution_data = row.get("resolution_data")

    return ConflictResolution(
        id=str(row.get("id") or ""),
        table_name=str(row.get("table_name") or ""),
        record_id=str(row.get("record_id") or ""),
        conflict_type=coerce_enum(
            ConflictType,
            row.get("conflict_type"),
            field="conflict_type",
            default=ConflictType.UPDATE,
            strict=strict,
        ),
        conflict_data=_as_dict(row.get("conflict_data")),
        resolution_strategy=coerce_enum(
            ResolutionStrategy,
            row.get("resolution_strategy"),
            field="resolution_strategy",
            default=ResolutionStrategy.LAST_WRITE_WINS,
            strict=strict,
        ),
        status=coerce_enum(
            ConflictStatus,
            row.get("status"),
            field="status",
            default=ConflictStatus.PENDING,
            strict=strict,
        ),
        resolved_by=_optional_str(row.get("resolved_by")),
        resolved_at=as_utc(row.get("resolved_at")),
        resolution_data=dict(resolution_data) if isinstance(resolution_data, Mapping) else None,
        escalation_reason=_optional_str(row.get("escalation_reason")),
        escalated_at=as_utc(row.get("escalated_at")),
        created_at=as_utc(row.get("created_at")),
    )
