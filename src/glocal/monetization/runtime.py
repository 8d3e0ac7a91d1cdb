"""
Process-level wiring for scheduled tasks and CLI commands.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from glocal.monetization.config import MonetizationConfig
from glocal.monetization.db import dispose_engine, get_session_factory
from glocal.monetization.integration import PaymentLifecycleCoordinator
from glocal.monetization.persistence.procedures import SQLAlchemyPersistenceClient

T = TypeVar("T")


def build_coordinator(config: MonetizationConfig | None = None) -> PaymentLifecycleCoordinator:
    """Wire the components against the default database."""
    client = SQLAlchemyPersistenceClient(get_session_factory())
    return PaymentLifecycleCoordinator.from_client(client, config=config)


async def _run(action: Callable[[PaymentLifecycleCoordinator], Awaitable[T]]) -> T:
    try:
        return await action(build_coordinator())
    finally:
        await dispose_engine()


def run_with_coordinator(action: Callable[[PaymentLifecycleCoordinator], Awaitable[T]]) -> T:
    """Run ``action`` in a fresh event loop and release the engine afterwards."""
    return asyncio.run(_run(action))
