"""
Unified Memory Store
Copyright 2025 Jurden Bruce

Two tiers (core, longterm) crossed with two scopes (global, project) in one
SQLite table. Public operations are coroutines; blocking database work runs
in worker threads.
"""

import asyncio
import logging
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analytics import MemoryAnalytics
from .cache import LRUCache
from .config import get_config
from .errors import StorageUnavailableError, ValidationError
from .locks import KeyedLocks
from .models import (
    CORE_MEMORY_SIZE_LIMIT,
    DeleteResult,
    DuplicateCheckResult,
    Memory,
    MemoryScope,
    MemoryTier,
    SearchResult,
    TierMigrationResult,
    derive_metadata,
    generate_memory_id,
    map_legacy_layer,
    normalize_tags,
    parse_scope,
    parse_tier,
    validate_memory_fields,
)
from .search import classify_match, rank_results
from .similarity import build_recommendation, find_duplicates, score_candidates
from .storage import SQLiteStore
from .utils import utf8_size

logger = logging.getLogger("unified-memory")

ID_MAX_ATTEMPTS = 5


class MemoryStore:
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or get_config()
        self.db_path = Path(self.config["db_path"])

        self.error_log: List[Dict[str, Any]] = []
        self.token_cache: LRUCache = LRUCache(maxsize=self.config["cache_maxsize"])
        self.record_locks = KeyedLocks()
        self.sqlite_store = SQLiteStore(self.db_path, self.error_log, self.config["error_log_size"])

        self.initialize()

    def initialize(self):
        """Create directories and open the database"""
        init_start = time.perf_counter()

        step_start = time.perf_counter()
        self._init_directories()
        logger.info(f"[TIMING] Directories initialized in {(time.perf_counter() - step_start)*1000:.2f}ms")

        step_start = time.perf_counter()
        self.sqlite_store.initialize()
        logger.info(f"[TIMING] SQLite initialized in {(time.perf_counter() - step_start)*1000:.2f}ms")

        total_time = (time.perf_counter() - init_start) * 1000
        logger.info(f"[TIMING] MemoryStore initialized in {total_time:.2f}ms total")

    def _init_directories(self):
        """Create necessary directories"""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Directories initialized at {self.db_path.parent}")
        except OSError as e:
            logger.error(f"Directory initialization failed: {e}")
            self._log_error("init_directories", e)
            raise StorageUnavailableError(f"Cannot create {self.db_path.parent}: {e}") from e

    def _log_error(self, operation: str, error: Exception):
        self.sqlite_store.log_error(operation, error)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store(
        self,
        content: str,
        tier: Any,
        scope: Any,
        project_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Validate and persist a new memory, returning its id"""
        tier, scope, project_id, content_size = validate_memory_fields(content, tier, scope, project_id)
        tags = normalize_tags(tags)
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object", field="metadata")

        now = datetime.now()
        memory = Memory(
            id="",
            content=content,
            tier=tier,
            scope=scope,
            project_id=project_id,
            tags=tags,
            metadata={**(metadata or {}), **derive_metadata(tier, scope, project_id)},
            content_size=content_size,
            created_at=now,
            accessed_at=now,
            access_count=0,
        )
        memory_id = await asyncio.to_thread(self._insert_with_unique_id, memory)

        if tier is MemoryTier.CORE:
            await asyncio.to_thread(self._check_core_capacity, scope, project_id)

        logger.info(f"Stored {tier.value}/{scope.value} memory {memory_id} ({content_size} bytes)")
        return memory_id

    def _insert_with_unique_id(self, memory: Memory) -> str:
        for _ in range(ID_MAX_ATTEMPTS):
            memory.id = generate_memory_id(memory.tier, memory.scope, memory.created_at)
            try:
                self.sqlite_store.insert_memory(memory)
                return memory.id
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e).upper():
                    raise ValidationError(f"Memory rejected by storage constraints: {e}") from e
                logger.warning(f"Memory id collision on {memory.id}, retrying with a new suffix")
        raise StorageUnavailableError(f"Could not allocate a unique memory id after {ID_MAX_ATTEMPTS} attempts")

    def _check_core_capacity(self, scope: MemoryScope, project_id: Optional[str]):
        total = self.sqlite_store.core_total_size(scope, project_id)
        capacity = self.config["core_tier_capacity"]
        if total > capacity:
            where = f"project {project_id}" if project_id else scope.value
            logger.warning(
                f"Core tier for {where} holds {total} bytes, over the {capacity} byte capacity. "
                "Consider migrating rarely used memories to longterm."
            )

    async def update(
        self,
        memory_id: str,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Memory]:
        """Rewrite content, tags or metadata of a memory; None when the id is unknown"""
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object", field="metadata")
        tags = normalize_tags(tags) if tags is not None else None
        return await asyncio.to_thread(self._update_sync, memory_id, content, tags, metadata)

    def _update_sync(self, memory_id, content, tags, metadata) -> Optional[Memory]:
        with self.record_locks.hold(memory_id):
            memory = self.sqlite_store.get_memory(memory_id)
            if memory is None:
                return None

            new_content = memory.content if content is None else content
            tier, scope, project_id, content_size = validate_memory_fields(
                new_content, memory.tier, memory.scope, memory.project_id
            )
            merged = {**memory.metadata, **(metadata or {}), **derive_metadata(tier, scope, project_id)}
            merged["updated_at"] = datetime.now().isoformat()

            updated = self.sqlite_store.update_memory(
                memory_id,
                content=new_content if content is not None else None,
                content_size=content_size,
                tags=tags,
                metadata=merged,
            )
            if not updated:
                return None
            logger.info(f"Updated memory {memory_id}")
            return self.sqlite_store.get_memory(memory_id)

    async def delete(self, memory_id: str, cascade: bool = False) -> DeleteResult:
        """Delete a memory, and with cascade every near-duplicate in the same tier/scope/project"""
        return await asyncio.to_thread(self._delete_sync, memory_id, cascade)

    def _related_ids(self, memory: Memory) -> List[str]:
        """Ids of near-duplicates sharing the memory's tier, scope and project"""
        candidates = self.sqlite_store.fetch_memories(
            memory.tier, memory.scope, memory.project_id, exclude_id=memory.id
        )
        matches = score_candidates(
            memory.content, candidates, self.config["duplicate_threshold"], self.token_cache
        )
        return [m.memory.id for m in matches]

    def _delete_sync(self, memory_id: str, cascade: bool) -> DeleteResult:
        locked_ids = {memory_id}
        if cascade:
            snapshot = self.sqlite_store.get_memory(memory_id)
            if snapshot is not None:
                locked_ids.update(self._related_ids(snapshot))

        with self.record_locks.hold_many(locked_ids):
            memory = self.sqlite_store.get_memory(memory_id)
            if memory is None:
                return DeleteResult(deleted=False, message=f"Memory with ID {memory_id} not found")

            related_ids: List[str] = []
            if cascade:
                # Re-scored under the locks; records that changed or appeared since the first pass are kept
                related_ids = [i for i in self._related_ids(memory) if i in locked_ids]

            deleted, related_deleted = self.sqlite_store.delete_memories(
                memory.id, related_ids, neighborhood=memory
            )

        if not deleted:
            return DeleteResult(deleted=False, message=f"Memory with ID {memory_id} not found")

        message = "Successfully deleted memory"
        if related_deleted:
            message += f" and {related_deleted} related memories"
        logger.info(f"Deleted memory {memory_id} (cascade={cascade}, related={related_deleted})")
        return DeleteResult(
            deleted=True,
            message=message,
            related_deleted=related_deleted,
            related_ids=related_ids,
        )

    async def migrate_tier(self, memory_id: str, to_tier: Any, reason: Optional[str] = None) -> TierMigrationResult:
        """Move a memory between core and longterm in place"""
        to_tier = parse_tier(to_tier)
        return await asyncio.to_thread(self._migrate_tier_sync, memory_id, to_tier, reason)

    def _migrate_tier_sync(self, memory_id: str, to_tier: MemoryTier, reason: Optional[str]) -> TierMigrationResult:
        with self.record_locks.hold(memory_id):
            memory = self.sqlite_store.get_memory(memory_id)
            if memory is None:
                return TierMigrationResult(False, None, to_tier, f"Memory with ID {memory_id} not found")

            from_tier = memory.tier
            if from_tier is to_tier:
                return TierMigrationResult(False, from_tier, to_tier, f"Memory is already in {to_tier.value} tier")

            try:
                _, scope, project_id, content_size = validate_memory_fields(
                    memory.content, to_tier, memory.scope, memory.project_id
                )
            except ValidationError as e:
                if e.field != "content":
                    raise
                size = utf8_size(memory.content)
                return TierMigrationResult(
                    False, from_tier, to_tier,
                    f"Cannot migrate to core tier: content size ({size} bytes) exceeds 2KB limit",
                )

            now = datetime.now().isoformat()
            metadata = {**memory.metadata, **derive_metadata(to_tier, scope, project_id)}
            metadata["migration_reason"] = reason or "Manual tier migration"
            metadata["migrated_at"] = now
            metadata["migrated_from"] = from_tier.value
            metadata["tier_history"] = metadata.get("tier_history", []) + [{
                "from": from_tier.value,
                "to": to_tier.value,
                "reason": metadata["migration_reason"],
                "at": now,
            }]

            updated = self.sqlite_store.update_memory(memory_id, tier=to_tier, metadata=metadata)
            if not updated:
                return TierMigrationResult(False, None, to_tier, f"Memory with ID {memory_id} not found")

        logger.info(f"Migrated memory {memory_id} from {from_tier.value} to {to_tier.value} ({content_size} bytes)")
        return TierMigrationResult(
            True, from_tier, to_tier,
            f"Successfully migrated memory from {from_tier.value} to {to_tier.value} tier",
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, memory_id: str) -> Optional[Memory]:
        """Fetch one memory by id; counts as an access"""
        refreshed = await asyncio.to_thread(self.sqlite_store.record_access, [memory_id])
        return refreshed.get(memory_id)

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config["search_default_limit"]
        max_limit = self.config["search_max_limit"]
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= max_limit:
            raise ValidationError(f"limit must be an integer between 1 and {max_limit}", field="limit")
        return limit

    async def search(
        self,
        query: str,
        tier: Any = None,
        scope: Any = None,
        project_id: Optional[str] = None,
        layer: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Lexical search; every returned memory has its access stats bumped"""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query is required", field="query")
        limit = self._resolve_limit(limit)

        if layer is not None:
            layer_tier, layer_scope = map_legacy_layer(layer)
            tier = layer_tier if tier is None else tier
            scope = layer_scope if scope is None else scope
        tier = parse_tier(tier) if tier is not None else None
        scope = parse_scope(scope) if scope is not None else None

        candidates = await asyncio.to_thread(self.sqlite_store.fetch_memories, tier, scope, project_id)

        results = []
        yield_every = self.config["scan_yield_every"]
        for index, memory in enumerate(candidates, 1):
            match = classify_match(query, memory, self.config["fuzzy_threshold"], self.token_cache)
            if match is not None:
                match_type, score = match
                results.append(SearchResult(memory=memory, score=score, match_type=match_type))
            if index % yield_every == 0:
                await asyncio.sleep(0)

        page = rank_results(results)[:limit]
        if not page:
            return []

        refreshed = await asyncio.to_thread(self.sqlite_store.record_access, [r.memory.id for r in page])
        # Records deleted since the scan drop out of the page
        page = [r for r in page if r.memory.id in refreshed]
        for result in page:
            result.memory = refreshed[result.memory.id]
        return page

    async def check_duplicate(
        self,
        content: str,
        tier: Any = None,
        scope: Any = None,
        project_id: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> DuplicateCheckResult:
        """Find stored memories similar to content without touching access stats"""
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Memory content is required", field="content")
        if threshold is None:
            threshold = self.config["duplicate_threshold"]
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            raise ValidationError("threshold must be a number between 0 and 1", field="threshold")
        tier = parse_tier(tier) if tier is not None else None
        scope = parse_scope(scope) if scope is not None else None

        candidates = await asyncio.to_thread(self.sqlite_store.fetch_memories, tier, scope, project_id)
        duplicates = await find_duplicates(
            content, candidates, threshold, self.token_cache, self.config["scan_yield_every"]
        )
        return DuplicateCheckResult(
            is_duplicate=bool(duplicates),
            duplicates=duplicates,
            recommendation=build_recommendation(duplicates),
        )

    async def get_core_memory_total_size(self, scope: Any = None, project_id: Optional[str] = None) -> int:
        scope = parse_scope(scope) if scope is not None else None
        return await asyncio.to_thread(self.sqlite_store.core_total_size, scope, project_id)

    def get_stats(self) -> Dict[str, Any]:
        """Backward compatible counts and sizes"""
        by_tier = {tier.value: 0 for tier in MemoryTier}
        by_scope = {scope.value: 0 for scope in MemoryScope}
        size_by_tier = {tier.value: 0 for tier in MemoryTier}

        for row in self.sqlite_store.tier_scope_totals():
            by_tier[row["tier"]] += row["count"]
            by_scope[row["scope"]] += row["count"]
            size_by_tier[row["tier"]] += row["size"]

        total = sum(by_tier.values())
        total_size = sum(size_by_tier.values())
        return {
            "total_memories": total,
            "total_size": total_size,
            "core_size": size_by_tier[MemoryTier.CORE.value],
            "longterm_size": size_by_tier[MemoryTier.LONGTERM.value],
            "average_size": total_size / total if total else 0,
            "by_tier": by_tier,
            "by_scope": by_scope,
            "core_size_limit": CORE_MEMORY_SIZE_LIMIT,
            "core_utilization": size_by_tier[MemoryTier.CORE.value] / CORE_MEMORY_SIZE_LIMIT,
            "database_size": self.sqlite_store.database_size(),
            "recent_errors": self.error_log[-5:],
        }

    async def get_analytics(self) -> Dict[str, Any]:
        memories = await asyncio.to_thread(self.sqlite_store.fetch_memories)
        analytics = MemoryAnalytics(
            core_tier_capacity=self.config["core_tier_capacity"],
            top_n=self.config["analytics_top_n"],
            yield_every=self.config["scan_yield_every"],
        )
        return await analytics.aggregate(memories)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self.sqlite_store.count_memories()

    def migrated_original_ids(self):
        return self.sqlite_store.migrated_original_ids()

    def backup_to(self, target: Path) -> int:
        """Snapshot the database to target, returning the number of memories captured"""
        return self.sqlite_store.backup_to(Path(target))

    def close(self):
        self.sqlite_store.close()

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down MemoryStore...")
        await asyncio.to_thread(self.close)
        logger.info("MemoryStore shutdown complete")
