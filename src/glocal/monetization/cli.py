#!/usr/bin/env python
"""
CLI management commands for the monetization core.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import click

from glocal.monetization.integration import PaymentLifecycleCoordinator
from glocal.monetization.logging import setup_logging

Action = Callable[[PaymentLifecycleCoordinator], Awaitable[Any]]


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    run: Callable[[Action], Any]
    init_db: Callable[[], None]


def _init_db() -> None:
    from glocal.monetization.db import create_all_tables_async, dispose_engine

    async def _create() -> None:
        try:
            await create_all_tables_async()
        finally:
            await dispose_engine()

    asyncio.run(_create())


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    from glocal.monetization.runtime import run_with_coordinator

    return CLIDependencies(run=run_with_coordinator, init_db=_init_db)


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@click.group()
def cli() -> None:
    """Glocal monetization CLI."""
    setup_logging()


@cli.command()
def init_database() -> None:
    """Create the monetization tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    deps.init_db()
    click.echo("Database initialized successfully!")


@cli.command()
def process_grace_periods() -> None:
    """Send due grace period reminders and expire overdue holders."""
    deps = _get_cli_dependencies()

    async def _process(coordinator: PaymentLifecycleCoordinator) -> dict[str, Any]:
        result = await coordinator.subscriptions.process_grace_period_reminders()
        return result.model_dump()

    _echo_json(deps.run(_process))


@cli.command()
@click.option("--hours-ago", type=int, default=None, help="Minimum hours since failure")
def retry_failed_payments(hours_ago: int | None) -> None:
    """Re-queue retry-eligible failed payments."""
    deps = _get_cli_dependencies()

    async def _retry(coordinator: PaymentLifecycleCoordinator) -> int:
        return await coordinator.retry_failed_payments(hours_ago)

    _echo_json({"retried": deps.run(_retry)})


@cli.command()
@click.option("--days-old", type=int, default=None, help="Retention in days")
@click.confirmation_option(prompt="Delete failed payments past retention?")
def cleanup_failed_payments(days_old: int | None) -> None:
    """Delete failed payments older than the retention window."""
    deps = _get_cli_dependencies()

    async def _cleanup(coordinator: PaymentLifecycleCoordinator) -> int:
        return await coordinator.payments.cleanup_old_failed_payments(days_old)

    _echo_json({"deleted": deps.run(_cleanup)})


@cli.command()
@click.option("--days-back", type=int, default=7, show_default=True, help="Window in days")
def conflict_stats(days_back: int) -> None:
    """Show conflict statistics."""
    deps = _get_cli_dependencies()

    async def _stats(coordinator: PaymentLifecycleCoordinator) -> dict[str, Any]:
        if coordinator.conflicts is None:
            raise click.ClickException("Conflict resolver is not configured")
        stats = await coordinator.conflicts.get_conflict_stats(days_back)
        return stats.model_dump()

    _echo_json(deps.run(_stats))


@cli.command()
@click.option("--user-id", default=None, help="Restrict to one user")
def payment_stats(user_id: str | None) -> None:
    """Show payment statistics."""
    deps = _get_cli_dependencies()

    async def _stats(coordinator: PaymentLifecycleCoordinator) -> dict[str, Any]:
        stats = await coordinator.payments.get_payment_stats(user_id)
        return stats.model_dump()

    _echo_json(deps.run(_stats))


if __name__ == "__main__":
    cli()
