"""Tests for lifecycle metrics."""

from unittest.mock import MagicMock

import pytest

from glocal.monetization.metrics import MonetizationMetrics

pytestmark = pytest.mark.unit


@pytest.fixture
def meter():
    meter = MagicMock()
    meter.create_counter.side_effect = lambda name, description, unit: MagicMock(name=name)
    return meter


@pytest.fixture
def metrics(meter):
    return MonetizationMetrics(meter=meter)


def test_counters_created_on_meter(meter, metrics):
    names = {call.kwargs["name"] for call in meter.create_counter.call_args_list}

    assert "monetization.payment.created" in names
    assert "monetization.payment.transition_rejected" in names
    assert "monetization.grace_period.expired" in names
    assert "monetization.conflict.detected" in names


def test_record_payment_created(metrics):
    metrics.record_payment_created("razorpay", "INR")

    metrics.payment_created_counter.add.assert_called_once_with(
        1, {"payment_method": "razorpay", "currency": "INR"}
    )


def test_record_transition_split_by_outcome(metrics):
    metrics.record_transition("completed", accepted=True)
    metrics.record_transition("pending", accepted=False)

    metrics.payment_transition_counter.add.assert_called_once_with(1, {"to_status": "completed"})
    metrics.payment_transition_rejected_counter.add.assert_called_once_with(
        1, {"to_status": "pending"}
    )


def test_record_retry(metrics):
    metrics.record_retry(exhausted=False)
    metrics.record_retry(exhausted=True)

    metrics.payment_retry_counter.add.assert_called_once_with(1)
    metrics.payment_retry_exhausted_counter.add.assert_called_once_with(1)


def test_record_conflict(metrics):
    metrics.record_conflict("update", "resolved", "merge")

    metrics.conflict_detected_counter.add.assert_called_once_with(
        1, {"conflict_type": "update", "status": "resolved", "strategy": "merge"}
    )


def test_default_meter_is_usable_without_sdk():
    metrics = MonetizationMetrics()

    metrics.record_grace_period_started("card_declined")
    metrics.record_reminder_sent("first")
    metrics.record_grace_period_expired()
    metrics.record_subscription_restored()
