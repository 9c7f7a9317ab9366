"""Tests for the analytics aggregator."""

import asyncio
from datetime import datetime, timedelta

import pytest

from unified_memory.analytics import MemoryAnalytics
from unified_memory.models import Memory, MemoryScope, MemoryTier


def make_memory(memory_id, tier, scope, created_at, project_id=None, tags=None, access_count=0, size=10):
    return Memory(
        id=memory_id,
        content="m" * size,
        tier=tier,
        scope=scope,
        project_id=project_id,
        tags=tags or [],
        metadata={},
        content_size=size,
        created_at=created_at,
        accessed_at=created_at,
        access_count=access_count,
    )


NOW = datetime(2025, 6, 15, 12, 0, 0)


@pytest.fixture
def sample_memories():
    return [
        make_memory("old", MemoryTier.LONGTERM, MemoryScope.GLOBAL, NOW - timedelta(days=60),
                    tags=["b"], size=100),
        make_memory("week", MemoryTier.LONGTERM, MemoryScope.PROJECT, NOW - timedelta(days=3),
                    project_id="/work/api", tags=["a", "b"], access_count=4, size=200),
        make_memory("today1", MemoryTier.CORE, MemoryScope.GLOBAL, NOW - timedelta(hours=2),
                    tags=["a"], access_count=1, size=300),
        make_memory("today2", MemoryTier.CORE, MemoryScope.PROJECT, NOW - timedelta(hours=1),
                    project_id="/work/web", tags=["c"], size=400),
    ]


class TestAggregate:
    """Tests for MemoryAnalytics.aggregate()."""

    async def test_distribution_and_storage(self, sample_memories):
        analytics = MemoryAnalytics(core_tier_capacity=1000)
        report = await analytics.aggregate(sample_memories, now=NOW)

        assert report["total_memories"] == 4
        assert report["tier_distribution"] == {"core": 2, "longterm": 2}
        assert report["scope_distribution"] == {"global": 2, "project": 2}

        storage = report["storage_analytics"]
        assert storage["total_size"] == 1000
        assert storage["average_size"] == 250
        assert storage["core_tier_utilization"] == pytest.approx(0.7)
        assert storage["longterm_growth_rate"] == pytest.approx(1 / 30)

    async def test_trends(self, sample_memories):
        report = await MemoryAnalytics(core_tier_capacity=1000).aggregate(sample_memories, now=NOW)
        trends = report["trends"]
        assert trends["memories_created_today"] == 2
        assert trends["memories_created_this_week"] == 3
        # "b" and "a" tie on count; "b" was seen first
        assert trends["top_tags"] == [
            {"tag": "b", "count": 2},
            {"tag": "a", "count": 2},
            {"tag": "c", "count": 1},
        ]
        assert [p["project"] for p in trends["active_projects"]] == ["/work/api", "/work/web"]
        assert report["generated_at"] == NOW.isoformat()

    async def test_access_patterns(self, sample_memories):
        report = await MemoryAnalytics(core_tier_capacity=1000).aggregate(sample_memories, now=NOW)
        access = report["access_patterns"]
        assert [m["id"] for m in access["most_accessed"]][:2] == ["week", "today1"]
        assert access["recently_accessed"][0]["id"] == "today2"
        assert [m["id"] for m in access["least_accessed"]] == ["old", "today2"]
        assert access["average_access_count"] == pytest.approx(5 / 4)

    async def test_empty(self):
        report = await MemoryAnalytics(core_tier_capacity=1000).aggregate([], now=NOW)
        assert report["total_memories"] == 0
        assert report["storage_analytics"]["average_size"] == 0
        assert report["access_patterns"]["average_access_count"] == 0
        assert report["trends"]["top_tags"] == []

    async def test_cancellable(self):
        memories = [
            make_memory(f"m{i}", MemoryTier.LONGTERM, MemoryScope.GLOBAL, NOW) for i in range(500)
        ]
        task = asyncio.ensure_future(MemoryAnalytics(1000, yield_every=10).aggregate(memories, now=NOW))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestStoreAnalytics:
    """Tests for MemoryStore.get_analytics()."""

    async def test_read_only(self, memory_store):
        memory_id = await memory_store.store("analytics subject", "core", "global", tags=["x"])
        report = await memory_store.get_analytics()
        assert report["total_memories"] == 1
        assert report["trends"]["memories_created_today"] == 1
        assert report["trends"]["top_tags"] == [{"tag": "x", "count": 1}]
        assert memory_store.sqlite_store.get_memory(memory_id).access_count == 0
