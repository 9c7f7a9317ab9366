"""
Analytics over the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .models import Memory, MemoryScope, MemoryTier
from .utils import start_of_day

logger = logging.getLogger("unified-memory.analytics")

GROWTH_WINDOW_DAYS = 30


def _rank_counts(counts: Dict[str, int], top_n: int, name_key: str, count_key: str) -> List[Dict[str, Any]]:
    # sorted() is stable, so equal counts keep first-seen order
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [{name_key: name, count_key: count} for name, count in ranked[:top_n]]


class MemoryAnalytics:
    """Read-only aggregation of distribution, storage, access and trend figures"""

    def __init__(self, core_tier_capacity: int, top_n: int = 10, yield_every: int = 50):
        self.core_tier_capacity = core_tier_capacity
        self.top_n = top_n
        self.yield_every = yield_every

    async def aggregate(self, memories: List[Memory], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Aggregate memories (oldest first); yields to the event loop while scanning"""
        now = now or datetime.now()
        today = start_of_day(now)
        week_start = today - timedelta(days=7)
        growth_start = now - timedelta(days=GROWTH_WINDOW_DAYS)

        tier_distribution = {tier.value: 0 for tier in MemoryTier}
        scope_distribution = {scope.value: 0 for scope in MemoryScope}
        tag_counts: Dict[str, int] = {}
        project_counts: Dict[str, int] = {}
        total_size = core_size = total_access = 0
        created_today = created_this_week = recent_longterm = 0

        for index, memory in enumerate(memories, 1):
            tier_distribution[memory.tier.value] += 1
            scope_distribution[memory.scope.value] += 1
            total_size += memory.content_size
            total_access += memory.access_count
            if memory.tier is MemoryTier.CORE:
                core_size += memory.content_size

            if memory.created_at >= today:
                created_today += 1
            if memory.created_at >= week_start:
                created_this_week += 1
            if memory.tier is MemoryTier.LONGTERM and memory.created_at >= growth_start:
                recent_longterm += 1

            for tag in memory.tags:
                tag_counts[tag] = tag_counts.get(tag, 0) + 1
            if memory.project_id:
                project_counts[memory.project_id] = project_counts.get(memory.project_id, 0) + 1

            if index % self.yield_every == 0:
                await asyncio.sleep(0)

        total = len(memories)
        most_accessed = sorted(memories, key=lambda m: (-m.access_count, -m.accessed_at.timestamp()))
        recently_accessed = sorted(memories, key=lambda m: -m.accessed_at.timestamp())
        never_accessed = [m for m in memories if m.access_count == 0]

        logger.info(f"Analytics generated over {total} memories")
        return {
            "total_memories": total,
            "tier_distribution": tier_distribution,
            "scope_distribution": scope_distribution,
            "storage_analytics": {
                "total_size": total_size,
                "average_size": total_size / total if total else 0,
                "core_tier_utilization": core_size / self.core_tier_capacity if self.core_tier_capacity else 0,
                "longterm_growth_rate": recent_longterm / GROWTH_WINDOW_DAYS,
            },
            "access_patterns": {
                "most_accessed": [m.to_dict() for m in most_accessed[:self.top_n]],
                "recently_accessed": [m.to_dict() for m in recently_accessed[:self.top_n]],
                "least_accessed": [m.to_dict() for m in never_accessed[:self.top_n]],
                "average_access_count": total_access / total if total else 0,
            },
            "trends": {
                "memories_created_today": created_today,
                "memories_created_this_week": created_this_week,
                "top_tags": _rank_counts(tag_counts, self.top_n, "tag", "count"),
                "active_projects": _rank_counts(project_counts, self.top_n, "project", "memory_count"),
            },
            "generated_at": now.isoformat(),
        }
