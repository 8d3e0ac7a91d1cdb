"""Payment transactions and their state machine."""

from glocal.monetization.payments.models import (
    VALID_TRANSITIONS,
    CreatePaymentRequest,
    PaymentMethod,
    PaymentStateTransition,
    PaymentStats,
    PaymentStatus,
    PaymentTransaction,
    is_valid_transition,
)

__all__ = [
    "VALID_TRANSITIONS",
    "CreatePaymentRequest",
    "PaymentMethod",
    "PaymentStateTransition",
    "PaymentStats",
    "PaymentStatus",
    "PaymentTransaction",
    "is_valid_transition",
]
