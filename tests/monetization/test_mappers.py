"""Tests for row to model mapping."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from glocal.monetization.conflicts.models import ConflictStatus, ResolutionStrategy
from glocal.monetization.exceptions import DataIntegrityError
from glocal.monetization.mappers import (
    as_utc,
    map_conflict_resolution,
    map_payment_transaction,
    map_subscription_state,
)
from glocal.monetization.payments.models import PaymentMethod, PaymentStatus
from glocal.monetization.subscriptions.models import SubscriptionStatus

pytestmark = pytest.mark.unit


def _payment_row(**overrides):
    row = {
        "id": "tx-1",
        "user_id": "user-1",
        "artist_id": "artist-1",
        "amount": 49900,
        "currency": "INR",
        "payment_method": "razorpay",
        "status": "failed",
        "previous_status": "pending",
        "state_transitions": [
            {"from_status": "created", "to_status": "pending", "timestamp": "2026-01-15T12:00:00Z"},
            {
                "from_status": "pending",
                "to_status": "failed",
                "timestamp": "2026-01-15T12:05:00Z",
                "error_code": "card_declined",
            },
        ],
        "idempotency_key": "order-0001",
        "retry_count": 1,
        "max_retries": 3,
        "created_at": datetime(2026, 1, 15, 12, 0),
        "updated_at": datetime(2026, 1, 15, 12, 5),
        "failed_at": datetime(2026, 1, 15, 12, 5),
        "metadata": {"plan": "pro"},
        "error_code": "card_declined",
    }
    row.update(overrides)
    return row


class TestAsUtc:
    def test_naive_datetime_read_as_utc(self):
        assert as_utc(datetime(2026, 1, 15, 12)) == datetime(2026, 1, 15, 12, tzinfo=UTC)

    def test_aware_datetime_converted(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        value = as_utc(datetime(2026, 1, 15, 17, 30, tzinfo=ist))

        assert value == datetime(2026, 1, 15, 12, tzinfo=UTC)
        assert value.tzinfo == UTC

    def test_iso_string(self):
        assert as_utc("2026-01-15T12:00:00Z") == datetime(2026, 1, 15, 12, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        assert as_utc(value) is None

    @pytest.mark.parametrize("value", ["not a date", 12345, ["2026-01-15"]])
    def test_unusable_values_rejected(self, value):
        with pytest.raises(DataIntegrityError):
            as_utc(value)


class TestMapPaymentTransaction:
    def test_full_row(self):
        payment = map_payment_transaction(_payment_row())

        assert payment.status == PaymentStatus.FAILED
        assert payment.previous_status == PaymentStatus.PENDING
        assert payment.payment_method == PaymentMethod.RAZORPAY
        assert payment.failed_at == datetime(2026, 1, 15, 12, 5, tzinfo=UTC)
        assert payment.completed_at is None
        assert payment.metadata == {"plan": "pro"}
        assert [t.to_status for t in payment.state_transitions] == [
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        ]
        assert payment.state_transitions[1].error_code == "card_declined"

    def test_missing_optional_columns(self):
        payment = map_payment_transaction(
            _payment_row(
                previous_status=None,
                state_transitions=None,
                metadata=None,
                max_retries=None,
                artist_id="",
            )
        )

        assert payment.previous_status is None
        assert payment.state_transitions == []
        assert payment.metadata == {}
        assert payment.max_retries == 3
        assert payment.artist_id is None

    def test_strict_mode_rejects_unknown_status(self):
        with pytest.raises(DataIntegrityError) as exc_info:
            map_payment_transaction(_payment_row(status="lost"))

        assert exc_info.value.context["field"] == "status"
        assert exc_info.value.context["value"] == "lost"

    def test_strict_mode_rejects_unknown_transition_status(self):
        transitions = [{"from_status": "created", "to_status": "teleported"}]

        with pytest.raises(DataIntegrityError):
            map_payment_transaction(_payment_row(state_transitions=transitions))

    def test_lenient_mode_falls_back_to_defaults(self):
        payment = map_payment_transaction(
            _payment_row(status="lost", payment_method="stripe", previous_status="ghost"),
            strict=False,
        )

        assert payment.status == PaymentStatus.CREATED
        assert payment.payment_method == PaymentMethod.RAZORPAY
        assert payment.previous_status == PaymentStatus.CREATED


class TestMapSubscriptionState:
    def test_grace_period_row(self):
        state = map_subscription_state(
            {
                "id": "artist-1",
                "subscription_status": "grace_period",
                "subscription_grace_period_start": datetime(2026, 1, 15, 12),
                "subscription_grace_reason": "card_declined",
                "subscription_last_reminder_day": 3,
            }
        )

        assert state.entity_id == "artist-1"
        assert state.in_grace_period is True
        assert state.is_publicly_visible is True
        assert state.grace_period_start == datetime(2026, 1, 15, 12, tzinfo=UTC)
        assert state.last_reminder_day == 3

    def test_grace_status_without_start_is_not_in_grace(self):
        state = map_subscription_state({"id": "artist-1", "subscription_status": "grace_period"})

        assert state.in_grace_period is False

    def test_unknown_status(self):
        row = {"id": "artist-1", "subscription_status": "payment_failed"}

        with pytest.raises(DataIntegrityError):
            map_subscription_state(row)

        state = map_subscription_state(row, strict=False)
        assert state.subscription_status == SubscriptionStatus.EXPIRED
        assert state.is_publicly_visible is False


class TestMapConflictResolution:
    def test_row(self):
        conflict = map_conflict_resolution(
            {
                "id": "conflict_1",
                "table_name": "posts",
                "record_id": "post-1",
                "conflict_type": "update",
                "conflict_data": {"current": {}, "incoming": {}},
                "resolution_strategy": "merge",
                "status": "escalated",
                "resolution_data": None,
                "created_at": "2026-01-15T12:00:00+00:00",
            }
        )

        assert conflict.status == ConflictStatus.ESCALATED
        assert conflict.resolution_strategy == ResolutionStrategy.MERGE
        assert conflict.resolution_data is None
        assert conflict.created_at == datetime(2026, 1, 15, 12, tzinfo=UTC)

    def test_lenient_defaults(self):
        conflict = map_conflict_resolution(
            {
                "id": "conflict_1",
                "table_name": "posts",
                "record_id": "post-1",
                "conflict_type": "upsert",
                "resolution_strategy": "coin_flip",
                "status": "lost",
            },
            strict=False,
        )

        assert conflict.conflict_type.value == "update"
        assert conflict.resolution_strategy == ResolutionStrategy.LAST_WRITE_WINS
        assert conflict.status == ConflictStatus.PENDING
        assert conflict.conflict_data == {}
