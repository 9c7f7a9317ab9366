"""Tests for moving memories between tiers."""

import pytest

from unified_memory.errors import ValidationError
from unified_memory.models import MemoryTier


class TestMigrateTier:
    """Tests for MemoryStore.migrate_tier()."""

    async def test_promote_small_longterm(self, memory_store):
        """Scenario D, success half."""
        memory_id = await memory_store.store("x" * 1000, "longterm", "global", tags=["keep"])
        before = memory_store.sqlite_store.get_memory(memory_id)

        result = await memory_store.migrate_tier(memory_id, "core", reason="used every session")

        assert result.migrated is True
        assert result.from_tier is MemoryTier.LONGTERM
        assert result.to_tier is MemoryTier.CORE
        assert result.message == "Successfully migrated memory from longterm to core tier"

        after = memory_store.sqlite_store.get_memory(memory_id)
        assert after.tier is MemoryTier.CORE
        assert after.id == before.id
        assert after.content == before.content
        assert after.tags == ["keep"]
        assert after.created_at == before.created_at
        assert after.access_count == before.access_count
        assert after.metadata["migration_reason"] == "used every session"
        assert after.metadata["migrated_from"] == "longterm"
        assert "migrated_at" in after.metadata
        assert after.metadata["tier_description"].startswith("Core Memory")

    async def test_promote_oversized_rejected(self, memory_store):
        """Scenario D, failure half."""
        memory_id = await memory_store.store("y" * 3000, "longterm", "global")
        result = await memory_store.migrate_tier(memory_id, "core")
        assert result.migrated is False
        assert "exceeds 2KB limit" in result.message
        assert "3000 bytes" in result.message
        assert memory_store.sqlite_store.get_memory(memory_id).tier is MemoryTier.LONGTERM

    async def test_demote_core(self, memory_store):
        memory_id = await memory_store.store("short", "core", "project", project_id="/work/cli")
        result = await memory_store.migrate_tier(memory_id, MemoryTier.LONGTERM)
        assert result.migrated is True
        after = memory_store.sqlite_store.get_memory(memory_id)
        assert after.tier is MemoryTier.LONGTERM
        assert after.project_id == "/work/cli"
        assert after.metadata["project_name"] == "cli"

    async def test_already_in_tier(self, memory_store):
        memory_id = await memory_store.store("short", "core", "global")
        result = await memory_store.migrate_tier(memory_id, "core")
        assert result.migrated is False
        assert result.message == "Memory is already in core tier"

    async def test_missing_memory(self, memory_store):
        result = await memory_store.migrate_tier("ghost", "core")
        assert result.migrated is False
        assert result.from_tier is None
        assert result.message == "Memory with ID ghost not found"

    async def test_invalid_target(self, memory_store):
        with pytest.raises(ValidationError):
            await memory_store.migrate_tier("anything", "archive")

    async def test_history_accumulates(self, memory_store):
        memory_id = await memory_store.store("round trip", "longterm", "global")
        await memory_store.migrate_tier(memory_id, "core")
        await memory_store.migrate_tier(memory_id, "longterm")
        history = memory_store.sqlite_store.get_memory(memory_id).metadata["tier_history"]
        assert [(h["from"], h["to"]) for h in history] == [("longterm", "core"), ("core", "longterm")]
