"""
Payment transaction models and the transition table.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentStatus(str, Enum):
    """Payment transaction lifecycle states."""

    CREATED = "created"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Supported payment gateways."""

    RAZORPAY = "razorpay"
    PAYPAL = "paypal"


VALID_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.CREATED: frozenset(
        {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED}
    ),
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    # Allow retry
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING}),
    PaymentStatus.REFUNDED: frozenset(),
}


def is_valid_transition(current: PaymentStatus | str, new: PaymentStatus | str) -> bool:
    """Return True when ``current -> new`` is allowed by the transition table."""
    try:
        current_status = PaymentStatus(current)
        new_status = PaymentStatus(new)
    except ValueError:
        return False
    return new_status in VALID_TRANSITIONS[current_status]


class PaymentStateTransition(BaseModel):
    """One entry of the append-only transition log."""

    model_config = ConfigDict(frozen=True)

    from_status: PaymentStatus
    to_status: PaymentStatus
    timestamp: datetime
    external_payment_id: str | None = None
    error_message: str | None = None
    error_code: str | None = None


class PaymentTransaction(BaseModel):
    """A payment attempt and its full lifecycle."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    artist_id: str | None = None
    subscription_id: str | None = None
    amount: int
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    previous_status: PaymentStatus | None = None
    state_transitions: list[PaymentStateTransition] = Field(default_factory=list)
    external_payment_id: str | None = None
    external_order_id: str | None = None
    external_subscription_id: str | None = None
    idempotency_key: str
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    error_code: str | None = None

    @property
    def is_retry(self) -> bool:
        """A pending row with a non-zero retry count is a re-attempt."""
        return self.status == PaymentStatus.PENDING and self.retry_count > 0

    @property
    def retry_budget_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    @property
    def is_terminal(self) -> bool:
        return self.status == PaymentStatus.REFUNDED


class CreatePaymentRequest(BaseModel):
    """Parameters accepted by ``PaymentStateMachine.create_payment``."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, description="Paying user")
    artist_id: str | None = Field(None, description="Subscription holder being paid for")
    subscription_id: str | None = Field(None, description="Related subscription")
    amount: int = Field(gt=0, description="Amount in minor currency units")
    currency: str | None = Field(
        None, min_length=3, max_length=3, description="ISO 4217 code; configured default if unset"
    )
    payment_method: PaymentMethod
    idempotency_key: str | None = Field(None, min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str | None) -> str | None:
        """Validate currency code."""
        if v is None:
            return v
        if not v.isalpha():
            raise ValueError("Currency must be a three-letter ISO code")
        return v.upper()


class PaymentStats(BaseModel):
    """Aggregate counts over payment transactions."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    total_amount: int = 0
