"""
Glocal monetization lifecycle core.

Provides:
- Payment transaction state machine with idempotent creation and retries
- Subscription grace period lifecycle
- Conflict resolution for concurrent writes
- Persistence through named, atomic operations
"""

from glocal.monetization.config import (
    ConflictResolutionConfig,
    GracePeriodConfig,
    MonetizationConfig,
    PaymentConfig,
)
from glocal.monetization.conflicts.resolver import ConflictResolver
from glocal.monetization.exceptions import (
    DataIntegrityError,
    InvalidStateTransitionError,
    MonetizationError,
    PaymentValidationError,
    PersistenceError,
    RetryBudgetExhaustedError,
    SubscriptionError,
    SubscriptionHolderNotFoundError,
)
from glocal.monetization.integration import PaymentLifecycleCoordinator
from glocal.monetization.payments.state_machine import PaymentStateMachine
from glocal.monetization.subscriptions.manager import SubscriptionLifecycleManager

__version__ = "0.1.0"

__all__ = [
    # Components
    "PaymentStateMachine",
    "SubscriptionLifecycleManager",
    "ConflictResolver",
    "PaymentLifecycleCoordinator",
    # Configuration
    "PaymentConfig",
    "GracePeriodConfig",
    "ConflictResolutionConfig",
    "MonetizationConfig",
    # Exceptions
    "MonetizationError",
    "PaymentValidationError",
    "InvalidStateTransitionError",
    "RetryBudgetExhaustedError",
    "PersistenceError",
    "DataIntegrityError",
    "SubscriptionError",
    "SubscriptionHolderNotFoundError",
]
