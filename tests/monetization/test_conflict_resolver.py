"""Tests for the conflict resolver service."""

from datetime import UTC, datetime

import pytest

from glocal.monetization.config import ConflictResolutionConfig
from glocal.monetization.conflicts.models import (
    ConflictStatus,
    ConflictType,
    ResolutionStrategy,
)
from glocal.monetization.conflicts.resolver import ConflictResolver, generate_conflict_id
from glocal.monetization.exceptions import PersistenceError
from glocal.monetization.persistence.models import ConflictResolutionTable

pytestmark = pytest.mark.integration

CURRENT = {"id": "post-1", "title": "Old title", "updated_at": "2026-01-01T10:00:00Z"}
INCOMING = {"id": "post-1", "title": "New title", "updated_at": "2026-01-01T11:00:00Z"}


class Attachment:
    def __init__(self, name: str) -> None:
        self.name = name

    def __str__(self) -> str:
        return f"attachment:{self.name}"


class BrokenClient:
    async def call(self, operation, params=None):
        raise PersistenceError("store down", operation)


async def _stored(session_factory, conflict_id: str) -> ConflictResolutionTable | None:
    async with session_factory() as session:
        return await session.get(ConflictResolutionTable, conflict_id)


@pytest.mark.asyncio
class TestUpdateConflicts:
    """Test update conflict resolution and persistence."""

    async def test_default_strategy_is_last_write_wins(
        self, conflict_resolver, session_factory, clock
    ):
        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", CURRENT, INCOMING
        )

        assert conflict.id.startswith("conflict_")
        assert conflict.conflict_type == ConflictType.UPDATE
        assert conflict.resolution_strategy == ResolutionStrategy.LAST_WRITE_WINS
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.is_resolved is True
        assert conflict.resolved_at == clock.now
        assert conflict.resolution_data == INCOMING
        assert conflict.conflict_data["current"] == CURRENT
        assert conflict.conflict_data["incoming"] == INCOMING

        row = await _stored(session_factory, conflict.id)
        assert row is not None
        assert row.status == "resolved"
        assert row.table_name == "posts"
        assert row.record_id == "post-1"
        assert row.resolution_strategy == "last_write_wins"
        assert row.resolution_data == INCOMING

    async def test_first_write_wins(self, conflict_resolver):
        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", CURRENT, INCOMING, strategy="first_write_wins"
        )

        assert conflict.resolution_data == CURRENT

    async def test_merge(self, conflict_resolver):
        conflict = await conflict_resolver.resolve_update_conflict(
            "profiles",
            "user-1",
            {"bio": "Singer", "links": {"web": "a.example"}, "city": "Pune"},
            {"bio": None, "links": {"insta": "@me"}, "city": "Goa"},
            strategy=ResolutionStrategy.MERGE,
        )

        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.resolution_data == {
            "bio": "Singer",
            "links": {"web": "a.example", "insta": "@me"},
            "city": "Goa",
        }

    async def test_manual_strategy_escalates(self, conflict_resolver, session_factory):
        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", CURRENT, INCOMING, strategy="manual"
        )

        assert conflict.status == ConflictStatus.ESCALATED
        assert conflict.resolution_data is None
        assert conflict.resolved_at is None
        row = await _stored(session_factory, conflict.id)
        assert row.status == "escalated"

    async def test_unknown_strategy_recorded_as_manual(self, conflict_resolver, session_factory):
        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", CURRENT, INCOMING, strategy="coin_flip"
        )

        assert conflict.status == ConflictStatus.ESCALATED
        assert conflict.resolution_strategy == ResolutionStrategy.MANUAL
        row = await _stored(session_factory, conflict.id)
        assert row.resolution_strategy == "manual"

    async def test_configured_default_strategy(self, persistence_client, clock):
        resolver = ConflictResolver(
            persistence_client,
            ConflictResolutionConfig(default_strategy="first_write_wins"),
            clock=clock,
        )

        conflict = await resolver.resolve_update_conflict("posts", "post-1", CURRENT, INCOMING)

        assert conflict.resolution_strategy == ResolutionStrategy.FIRST_WRITE_WINS
        assert conflict.resolution_data == CURRENT

    async def test_auto_resolve_disabled_leaves_conflict_pending(
        self, persistence_client, clock
    ):
        resolver = ConflictResolver(
            persistence_client,
            ConflictResolutionConfig(auto_resolve_conflicts=False),
            clock=clock,
        )

        update = await resolver.resolve_update_conflict("posts", "post-1", CURRENT, INCOMING)
        delete = await resolver.resolve_delete_conflict("posts", "post-2", CURRENT, "spam")
        insert = await resolver.resolve_insert_conflict("posts", "post-3", CURRENT, INCOMING)

        for conflict in (update, delete, insert):
            assert conflict.status == ConflictStatus.PENDING
            assert conflict.resolution_data is None
        pending = await resolver.get_pending_conflicts()
        assert {conflict.id for conflict in pending} == {update.id, delete.id, insert.id}

    async def test_datetime_values_are_stored_as_json(self, conflict_resolver, session_factory):
        current = {"title": "a", "updated_at": datetime(2026, 1, 1, 10, tzinfo=UTC)}
        incoming = {"title": "b", "updated_at": datetime(2026, 1, 1, 11, tzinfo=UTC)}

        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", current, incoming
        )

        assert conflict.resolution_data == incoming
        row = await _stored(session_factory, conflict.id)
        assert row.resolution_data["title"] == "b"
        assert row.resolution_data["updated_at"].startswith("2026-01-01T11:00:00")

    async def test_persistence_failure_still_returns_resolution(self, clock):
        resolver = ConflictResolver(BrokenClient(), clock=clock)

        conflict = await resolver.resolve_update_conflict("posts", "post-1", CURRENT, INCOMING)

        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.resolution_data == INCOMING

    async def test_unserializable_values_do_not_lose_resolution(
        self, conflict_resolver, session_factory
    ):
        blob = Attachment("cover.png")
        current = {"title": "a", "attachment": blob}

        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "post-1", current, INCOMING
        )

        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.resolution_data == INCOMING
        row = await _stored(session_factory, conflict.id)
        assert row is not None
        assert row.conflict_data["current"]["attachment"] == str(blob)


@pytest.mark.asyncio
class TestDeleteAndInsertConflicts:
    """Deletes win; inserts keep the incoming row."""

    async def test_delete_conflict(self, conflict_resolver, session_factory):
        conflict = await conflict_resolver.resolve_delete_conflict(
            "posts", "post-1", CURRENT, "removed by author"
        )

        assert conflict.conflict_type == ConflictType.DELETE
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.resolution_data == {"action": "delete"}
        assert conflict.conflict_data["delete_reason"] == "removed by author"
        row = await _stored(session_factory, conflict.id)
        assert row.conflict_type == "delete"

    async def test_insert_conflict(self, conflict_resolver):
        conflict = await conflict_resolver.resolve_insert_conflict(
            "posts", "post-1", CURRENT, INCOMING
        )

        assert conflict.conflict_type == ConflictType.INSERT
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.resolution_data == INCOMING
        assert conflict.conflict_data["existing"] == CURRENT


@pytest.mark.asyncio
class TestOperatorActions:
    """Test pending listing, manual resolution and escalation."""

    @pytest.fixture
    def manual_resolver(self, persistence_client, clock) -> ConflictResolver:
        return ConflictResolver(
            persistence_client,
            ConflictResolutionConfig(auto_resolve_conflicts=False),
            clock=clock,
        )

    async def test_pending_conflicts_newest_first_and_filtered(self, manual_resolver, clock):
        older = await manual_resolver.resolve_update_conflict("posts", "p-1", CURRENT, INCOMING)
        clock.advance(minutes=5)
        newer = await manual_resolver.resolve_update_conflict("posts", "p-2", CURRENT, INCOMING)
        clock.advance(minutes=5)
        other = await manual_resolver.resolve_update_conflict("events", "e-1", CURRENT, INCOMING)

        all_pending = await manual_resolver.get_pending_conflicts()
        posts_only = await manual_resolver.get_pending_conflicts("posts")
        limited = await manual_resolver.get_pending_conflicts(limit=1)

        assert [conflict.id for conflict in all_pending] == [other.id, newer.id, older.id]
        assert [conflict.id for conflict in posts_only] == [newer.id, older.id]
        assert [conflict.id for conflict in limited] == [other.id]
        assert posts_only[0].conflict_data["incoming"] == INCOMING

    async def test_resolve_manually(self, manual_resolver, session_factory, clock):
        conflict = await manual_resolver.resolve_update_conflict(
            "posts", "p-1", CURRENT, INCOMING
        )
        resolved_at = clock.advance(minutes=3)

        resolved = await manual_resolver.resolve_conflict_manually(
            conflict.id, "moderator-1", {"title": "Agreed title"}
        )

        assert resolved is True
        row = await _stored(session_factory, conflict.id)
        assert row.status == "resolved"
        assert row.resolved_by == "moderator-1"
        assert row.resolution_data == {"title": "Agreed title"}
        assert row.resolved_at.replace(tzinfo=UTC) == resolved_at
        assert await manual_resolver.get_pending_conflicts() == []

    async def test_escalate_then_resolve(self, manual_resolver, session_factory):
        conflict = await manual_resolver.resolve_update_conflict(
            "posts", "p-1", CURRENT, INCOMING
        )

        assert await manual_resolver.escalate_conflict(conflict.id, "needs owner input") is True
        row = await _stored(session_factory, conflict.id)
        assert row.status == "escalated"
        assert row.escalation_reason == "needs owner input"
        assert row.escalated_at is not None

        assert await manual_resolver.escalate_conflict(conflict.id, "again") is False
        assert await manual_resolver.resolve_conflict_manually(conflict.id, "owner", {}) is True

    async def test_resolved_conflicts_are_closed(self, conflict_resolver):
        conflict = await conflict_resolver.resolve_update_conflict(
            "posts", "p-1", CURRENT, INCOMING
        )

        assert await conflict_resolver.escalate_conflict(conflict.id, "late") is False
        assert await conflict_resolver.resolve_conflict_manually(conflict.id, "x", {}) is False

    async def test_unknown_conflict(self, conflict_resolver):
        assert await conflict_resolver.escalate_conflict("conflict_missing", "why") is False
        assert (
            await conflict_resolver.resolve_conflict_manually("conflict_missing", "x", {}) is False
        )

    async def test_store_failure(self, clock):
        resolver = ConflictResolver(BrokenClient(), clock=clock)

        assert await resolver.get_pending_conflicts() == []
        assert await resolver.escalate_conflict("c", "r") is False
        assert await resolver.resolve_conflict_manually("c", "x", {}) is False
        assert (await resolver.get_conflict_stats()).total == 0


@pytest.mark.asyncio
class TestConflictStats:
    """Test statistics over a window."""

    async def test_stats(self, persistence_client, clock):
        auto = ConflictResolver(persistence_client, clock=clock)
        manual = ConflictResolver(
            persistence_client,
            ConflictResolutionConfig(auto_resolve_conflicts=False),
            clock=clock,
        )

        # Outside the window
        await auto.resolve_update_conflict("posts", "ancient", CURRENT, INCOMING)
        clock.advance(days=10)

        await auto.resolve_update_conflict("posts", "p-1", CURRENT, INCOMING)
        await auto.resolve_update_conflict("posts", "p-2", CURRENT, INCOMING, strategy="manual")
        pending = await manual.resolve_update_conflict("posts", "p-3", CURRENT, INCOMING)
        slow = await manual.resolve_update_conflict("posts", "p-4", CURRENT, INCOMING)
        clock.advance(seconds=4)
        await manual.resolve_conflict_manually(slow.id, "moderator", {"ok": True})

        stats = await auto.get_conflict_stats(days_back=7)

        assert stats.total == 4
        assert stats.resolved == 2
        assert stats.escalated == 1
        assert stats.pending == 1
        # Auto-resolved in 0 ms, manual one after 4000 ms
        assert stats.avg_resolution_ms == pytest.approx(2000.0)
        assert pending.status == ConflictStatus.PENDING

    async def test_empty_window(self, conflict_resolver, clock):
        await conflict_resolver.resolve_update_conflict("posts", "p-1", CURRENT, INCOMING)
        clock.advance(days=8)

        stats = await conflict_resolver.get_conflict_stats(days_back=7)

        assert stats.total == 0
        assert stats.avg_resolution_ms == 0.0


def test_conflict_ids_are_unique():
    ids = {generate_conflict_id() for _ in range(100)}

    assert len(ids) == 100
    assert all(len(conflict_id) <= 64 for conflict_id in ids)
