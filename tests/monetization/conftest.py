"""Test fixtures for the monetization core."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from glocal.monetization.config import (
    ConflictResolutionConfig,
    GracePeriodConfig,
    PaymentConfig,
)
from glocal.monetization.conflicts.resolver import ConflictResolver
from glocal.monetization.db import create_all_tables_async
from glocal.monetization.integration import PaymentLifecycleCoordinator
from glocal.monetization.metrics import MonetizationMetrics
from glocal.monetization.payments.state_machine import PaymentStateMachine
from glocal.monetization.persistence.models import NotificationTable, SubscriptionHolderTable
from glocal.monetization.persistence.procedures import SQLAlchemyPersistenceClient
from glocal.monetization.subscriptions.manager import SubscriptionLifecycleManager

START_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class MutableClock:
    """Injected clock that tests move forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(START_TIME)


@pytest_asyncio.fixture(scope="function")
async def session_factory():
    """Session factory over a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    await create_all_tables_async(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def persistence_client(session_factory, clock) -> SQLAlchemyPersistenceClient:
    return SQLAlchemyPersistenceClient(session_factory, clock=clock)


@pytest.fixture
def metrics() -> MonetizationMetrics:
    return MonetizationMetrics()


@pytest.fixture
def payment_state_machine(persistence_client, metrics) -> PaymentStateMachine:
    return PaymentStateMachine(persistence_client, PaymentConfig(), metrics=metrics)


@pytest.fixture
def subscription_manager(persistence_client, metrics, clock) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(
        persistence_client, GracePeriodConfig(), metrics=metrics, clock=clock
    )


@pytest.fixture
def conflict_resolver(persistence_client, metrics, clock) -> ConflictResolver:
    return ConflictResolver(
        persistence_client, ConflictResolutionConfig(), metrics=metrics, clock=clock
    )


@pytest.fixture
def coordinator(
    payment_state_machine, subscription_manager, conflict_resolver, clock
) -> PaymentLifecycleCoordinator:
    return PaymentLifecycleCoordinator(
        payment_state_machine, subscription_manager, conflict_resolver, clock=clock
    )


@pytest.fixture
def seed_holder(session_factory) -> Callable[..., Awaitable[str]]:
    """Insert a subscription holder row; returns its id."""

    async def _seed(entity_id: str = "artist-1", **values: Any) -> str:
        async with session_factory() as session, session.begin():
            session.add(SubscriptionHolderTable(id=entity_id, **values))
        return entity_id

    return _seed


@pytest.fixture
def fetch_notifications(session_factory) -> Callable[[str], Awaitable[list[NotificationTable]]]:
    """Load notifications stored for one user, oldest first."""

    async def _fetch(user_id: str) -> list[NotificationTable]:
        async with session_factory() as session:
            result = await session.scalars(
                select(NotificationTable)
                .where(NotificationTable.user_id == user_id)
                .order_by(NotificationTable.created_at)
            )
            return list(result)

    return _fetch


@pytest.fixture
def payment_request() -> dict[str, Any]:
    return {
        "user_id": "user-1",
        "artist_id": "artist-1",
        "amount": 49900,
        "currency": "inr",
        "payment_method": "razorpay",
        "idempotency_key": "order-0001",
    }
