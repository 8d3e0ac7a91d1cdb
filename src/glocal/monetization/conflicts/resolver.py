"""
Conflict resolver.

Adjudicates concurrent writes to the same record and keeps an audit trail of
every conflict in ``conflict_resolutions``.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError

from glocal.monetization.config import ConflictResolutionConfig
from glocal.monetization.conflicts.models import (
    ConflictResolution,
    ConflictStats,
    ConflictStatus,
    ConflictType,
    ResolutionStrategy,
)
from glocal.monetization.conflicts.strategies import STRATEGIES
from glocal.monetization.exceptions import MonetizationError
from glocal.monetization.mappers import as_utc, map_conflict_resolution
from glocal.monetization.metrics import MonetizationMetrics
from glocal.monetization.persistence.client import Operation, PersistenceClient

logger = structlog.get_logger(__name__)

_BOUNDARY_ERRORS = (MonetizationError, SQLAlchemyError)


def generate_conflict_id() -> str:
    return f"conflict_{uuid4().hex}"


class ConflictResolver:
    """
    Resolve update, delete and insert conflicts.

    With auto-resolve enabled, update conflicts are settled by the requested
    strategy (or the configured default); strategies that cannot settle a
    conflict automatically escalate it. With auto-resolve disabled every
    conflict is recorded as pending for an operator.
    """

    def __init__(
        self,
        client: PersistenceClient,
        config: ConflictResolutionConfig | None = None,
        metrics: MonetizationMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.config = config or ConflictResolutionConfig()
        self.metrics = metrics or MonetizationMetrics()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ==================== Detection ====================

    async def resolve_update_conflict(
        self,
        table_name: str,
        record_id: str,
        current_data: Mapping[str, Any],
        incoming_data: Mapping[str, Any],
        strategy: ResolutionStrategy | str | None = None,
    ) -> ConflictResolution:
        """
        Resolve an update conflict between two snapshots of one record.

        Returns the conflict record. When resolved, ``resolution_data`` holds
        the winning (or merged) snapshot.
        """
        requested = strategy.value if isinstance(strategy, ResolutionStrategy) else strategy
        requested = requested or self.config.default_strategy
        try:
            resolution_strategy = ResolutionStrategy(requested)
        except ValueError:
            logger.warning(
                "Unknown conflict strategy recorded as manual",
                table_name=table_name,
                record_id=record_id,
                strategy=requested,
            )
            resolution_strategy = ResolutionStrategy.MANUAL

        now = self._clock()
        conflict = ConflictResolution(
            id=generate_conflict_id(),
            table_name=table_name,
            record_id=record_id,
            conflict_type=ConflictType.UPDATE,
            conflict_data={
                "current": dict(current_data),
                "incoming": dict(incoming_data),
                "timestamp": now.isoformat(),
            },
            resolution_strategy=resolution_strategy,
            created_at=now,
        )

        if self.config.auto_resolve_conflicts:
            apply = STRATEGIES.get(resolution_strategy.value)
            if apply is not None:
                conflict.resolution_data = apply(current_data, incoming_data)
                conflict.status = ConflictStatus.RESOLVED
                conflict.resolved_at = now
            else:
                conflict.status = ConflictStatus.ESCALATED

        await self._log_conflict(conflict)
        return conflict

    async def resolve_delete_conflict(
        self,
        table_name: str,
        record_id: str,
        current_data: Mapping[str, Any],
        delete_reason: str,
    ) -> ConflictResolution:
        """Resolve a conflict between a delete and a concurrent change; deletes win."""
        now = self._clock()
        conflict = ConflictResolution(
            id=generate_conflict_id(),
            table_name=table_name,
            record_id=record_id,
            conflict_type=ConflictType.DELETE,
            conflict_data={
                "current": dict(current_data),
                "delete_reason": delete_reason,
                "timestamp": now.isoformat(),
            },
            resolution_strategy=ResolutionStrategy.LAST_WRITE_WINS,
            created_at=now,
        )

        if self.config.auto_resolve_conflicts:
            conflict.status = ConflictStatus.RESOLVED
            conflict.resolved_at = now
            conflict.resolution_data = {"action": "delete"}

        await self._log_conflict(conflict)
        return conflict

    async def resolve_insert_conflict(
        self,
        table_name: str,
        record_id: str,
        existing_data: Mapping[str, Any],
        incoming_data: Mapping[str, Any],
    ) -> ConflictResolution:
        """Resolve a duplicate insert; the incoming row wins."""
        now = self._clock()
        conflict = ConflictResolution(
            id=generate_conflict_id(),
            table_name=table_name,
            record_id=record_id,
            conflict_type=ConflictType.INSERT,
            conflict_data={
                "existing": dict(existing_data),
                "incoming": dict(incoming_data),
                "timestamp": now.isoformat(),
            },
            resolution_strategy=ResolutionStrategy.LAST_WRITE_WINS,
            created_at=now,
        )

        if self.config.auto_resolve_conflicts:
            conflict.status = ConflictStatus.RESOLVED
            conflict.resolved_at = now
            conflict.resolution_data = dict(incoming_data)

        await self._log_conflict(conflict)
        return conflict

    async def _log_conflict(self, conflict: ConflictResolution) -> None:
        self.metrics.record_conflict(
            conflict.conflict_type.value,
            conflict.status.value,
            conflict.resolution_strategy.value,
        )
        try:
            await self.client.call(
                Operation.INSERT_CONFLICT_RESOLUTION,
                {
                    "id": conflict.id,
                    "table_name": conflict.table_name,
                    "record_id": conflict.record_id,
                    "conflict_type": conflict.conflict_type.value,
                    "conflict_data": to_jsonable_python(conflict.conflict_data, fallback=str),
                    "resolution_strategy": conflict.resolution_strategy.value,
                    "status": conflict.status.value,
                    "resolved_by": conflict.resolved_by,
                    "resolved_at": conflict.resolved_at,
                    "resolution_data": to_jsonable_python(conflict.resolution_data, fallback=str),
                    "created_at": conflict.created_at,
                },
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error(
                "Failed to log conflict",
                conflict_id=conflict.id,
                table_name=conflict.table_name,
                record_id=conflict.record_id,
                error=str(exc),
            )
            return

        logger.info(
            "Conflict recorded",
            conflict_id=conflict.id,
            table_name=conflict.table_name,
            record_id=conflict.record_id,
            conflict_type=conflict.conflict_type.value,
            status=conflict.status.value,
        )

    # ==================== Operator actions ====================

    async def get_pending_conflicts(
        self, table_name: str | None = None, limit: int = 50
    ) -> list[ConflictResolution]:
        """Get pending conflicts, newest first."""
        try:
            rows = await self.client.call(
                Operation.LIST_PENDING_CONFLICTS, {"table_name": table_name, "limit": limit}
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to get pending conflicts", table_name=table_name, error=str(exc))
            return []

        conflicts = []
        for row in rows or []:
            try:
                conflicts.append(
                    map_conflict_resolution(row, strict=self.config.strict_row_validation)
                )
            except MonetizationError as exc:
                logger.error(
                    "Skipping malformed conflict row", conflict_id=row.get("id"), error=str(exc)
                )
        return conflicts

    async def resolve_conflict_manually(
        self, conflict_id: str, resolved_by: str, resolution_data: Mapping[str, Any]
    ) -> bool:
        """Resolve a pending or escalated conflict by hand."""
        try:
            resolved = await self.client.call(
                Operation.RESOLVE_CONFLICT,
                {
                    "conflict_id": conflict_id,
                    "resolved_by": resolved_by,
                    "resolution_data": to_jsonable_python(dict(resolution_data), fallback=str),
                },
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to resolve conflict", conflict_id=conflict_id, error=str(exc))
            return False

        if not resolved:
            logger.warning("Conflict not open for resolution", conflict_id=conflict_id)
            return False

        logger.info("Conflict resolved manually", conflict_id=conflict_id, resolved_by=resolved_by)
        return True

    async def escalate_conflict(self, conflict_id: str, reason: str) -> bool:
        """Escalate a pending conflict."""
        try:
            escalated = await self.client.call(
                Operation.ESCALATE_CONFLICT, {"conflict_id": conflict_id, "reason": reason}
            )
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to escalate conflict", conflict_id=conflict_id, error=str(exc))
            return False

        if not escalated:
            logger.warning("Conflict not pending, escalation skipped", conflict_id=conflict_id)
            return False

        logger.info("Conflict escalated", conflict_id=conflict_id, reason=reason)
        return True

    # ==================== Reporting ====================

    async def get_conflict_stats(self, days_back: int = 7) -> ConflictStats:
        """
        Get conflict statistics over the last ``days_back`` days.

        ``avg_resolution_ms`` averages ``resolved_at - created_at`` over
        resolved conflicts that carry both timestamps.
        """
        try:
            rows = await self.client.call(Operation.LIST_CONFLICTS_SINCE, {"days_back": days_back})
            stats = ConflictStats()
            total_resolution_ms = 0.0
            timed = 0

            for row in rows or []:
                stats.total += 1
                status = row.get("status")
                if status == ConflictStatus.RESOLVED.value:
                    stats.resolved += 1
                    created_at = as_utc(row.get("created_at"))
                    resolved_at = as_utc(row.get("resolved_at"))
                    if created_at and resolved_at:
                        total_resolution_ms += (resolved_at - created_at).total_seconds() * 1000
                        timed += 1
                elif status == ConflictStatus.PENDING.value:
                    stats.pending += 1
                elif status == ConflictStatus.ESCALATED.value:
                    stats.escalated += 1

            if timed:
                stats.avg_resolution_ms = total_resolution_ms / timed
            return stats
        except _BOUNDARY_ERRORS as exc:
            logger.error("Failed to get conflict stats", days_back=days_back, error=str(exc))
            return ConflictStats()
