"""
Legacy layer-based memory migration for the Unified Memory Store
Copyright 2025 Jurden Bruce

Carries records from the old `memories(layer, ...)` database into the
unified tier/scope table. A verified snapshot of both databases is taken
before the first write; per-record failures are counted, never fatal.
"""

import asyncio
import json
import logging
import shutil
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import BackupError, MemoryStoreError
from .models import (
    CORE_MEMORY_SIZE_LIMIT,
    MemoryScope,
    MemoryTier,
    map_legacy_layer,
)
from .utils import utf8_size

logger = logging.getLogger("unified-memory.migration")

MIGRATION_SOURCE = "legacy_layer_system"


@dataclass
class LegacyMemory:
    id: str
    layer: Optional[str]
    content: str
    tags: List[str]
    metadata: Dict[str, Any]
    project_path: Optional[str]
    created_at: Optional[str]
    accessed_at: Optional[str]
    access_count: int = 0

    @classmethod
    def from_row(cls, row) -> "LegacyMemory":
        """Create LegacyMemory from a legacy memories row"""
        keys = row.keys()
        tags = json.loads(row["tags"]) if "tags" in keys and row["tags"] else []
        metadata = json.loads(row["metadata"]) if "metadata" in keys and row["metadata"] else {}
        if not isinstance(tags, list):
            raise ValueError(f"tags column is not a JSON array: {row['tags']!r}")
        if not isinstance(metadata, dict):
            raise ValueError(f"metadata column is not a JSON object: {row['metadata']!r}")
        return cls(
            id=str(row["id"]),
            layer=row["layer"] if "layer" in keys else None,
            content=row["content"] or "",
            tags=[str(t) for t in tags],
            metadata=metadata,
            project_path=row["project_path"] if "project_path" in keys else None,
            created_at=row["created_at"] if "created_at" in keys else None,
            accessed_at=row["accessed_at"] if "accessed_at" in keys else None,
            access_count=(row["access_count"] or 0) if "access_count" in keys else 0,
        )


@dataclass
class MigrationBackup:
    path: Path
    legacy_count: int
    unified_count: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "legacy_count": self.legacy_count,
            "unified_count": self.unified_count,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MigrationResult:
    success: bool = False
    migrated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    details: Dict[str, int] = field(default_factory=lambda: {
        "core_memories": 0,
        "longterm_memories": 0,
        "global_memories": 0,
        "project_memories": 0,
    })
    backup: Optional[MigrationBackup] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "migrated_count": self.migrated_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "errors": self.errors,
            "details": self.details,
            "backup": self.backup.to_dict() if self.backup else None,
        }


def resolve_legacy_placement(layer: Optional[str], content: str) -> Tuple[MemoryTier, MemoryScope, bool]:
    """Tier/scope for a legacy record and whether it was demoted from core.

    Legacy rows predate the core size limit; oversized core content is
    demoted to longterm instead of rejected.
    """
    tier, scope = map_legacy_layer(layer)
    demoted = tier is MemoryTier.CORE and utf8_size(content) > CORE_MEMORY_SIZE_LIMIT
    if demoted:
        tier = MemoryTier.LONGTERM
    return tier, scope, demoted


def _verify_copy(path: Path, table: str, expected_rows: int):
    conn = sqlite3.connect(str(path))
    try:
        integrity = conn.execute("PRAGMA integrity_check").fetchone()[0]
        if integrity != "ok":
            raise BackupError(f"Integrity check failed for {path}: {integrity}")
        rows = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        if rows != expected_rows:
            raise BackupError(f"{path} holds {rows} rows in {table}, expected {expected_rows}")
    finally:
        conn.close()


class LegacyMigration:
    """One-shot migration from the layer-based database"""

    def __init__(self, memory_store, legacy_db_path: Optional[Path] = None, backup_dir: Optional[Path] = None):
        self.memory_store = memory_store
        config = memory_store.config
        self.legacy_db_path = Path(legacy_db_path or config["legacy_db_path"])
        self.backup_dir = Path(backup_dir or config["backup_dir"])

    def _connect_legacy(self) -> sqlite3.Connection:
        conn = sqlite3.connect(f"{self.legacy_db_path.resolve().as_uri()}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def count_legacy_memories(self) -> int:
        """Rows in the legacy table, 0 when the database or table is absent"""
        if not self.legacy_db_path.exists():
            return 0
        conn = self._connect_legacy()
        try:
            return conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
        except sqlite3.OperationalError as e:
            logger.warning(f"Legacy database {self.legacy_db_path} has no readable memories table: {e}")
            return 0
        finally:
            conn.close()

    def read_legacy_rows(self) -> List[sqlite3.Row]:
        conn = self._connect_legacy()
        try:
            return conn.execute("SELECT * FROM memories ORDER BY created_at ASC").fetchall()
        finally:
            conn.close()

    def create_backup(self) -> MigrationBackup:
        """Snapshot legacy and unified databases and verify both copies"""
        created_at = datetime.now()
        target = self.backup_dir / f"migration_{created_at.strftime('%Y%m%d_%H%M%S_%f')}"
        try:
            target.mkdir(parents=True, exist_ok=False)

            legacy_count = self.count_legacy_memories()
            shutil.copy2(self.legacy_db_path, target / "legacy.db")
            _verify_copy(target / "legacy.db", "memories", legacy_count)

            unified_count = self.memory_store.backup_to(target / "unified.db")
            _verify_copy(target / "unified.db", "unified_memories", unified_count)

            manifest = {
                "timestamp": created_at.isoformat(),
                "description": "Snapshot taken before legacy memory migration",
                "sources": {
                    "legacy": str(self.legacy_db_path),
                    "unified": str(self.memory_store.db_path),
                },
                "files": ["legacy.db", "unified.db"],
                "stats": {"legacy_memories": legacy_count, "unified_memories": unified_count},
            }
            with open(target / "manifest.json", "w", encoding="utf-8") as f:
                json.dump(manifest, f, indent=2)
        except BackupError:
            raise
        except (OSError, sqlite3.Error, MemoryStoreError) as e:
            raise BackupError(f"Failed to create migration backup at {target}: {e}") from e

        logger.info(f"Migration backup verified at {target}")
        return MigrationBackup(target, legacy_count, unified_count, created_at)

    async def migrate(self, project_id: Optional[str] = None) -> MigrationResult:
        """Migrate every legacy record into the unified store"""
        result = MigrationResult()

        legacy_count = await asyncio.to_thread(self.count_legacy_memories)
        if legacy_count == 0:
            logger.info("No legacy memories found, nothing to migrate")
            result.success = True
            return result

        try:
            result.backup = await asyncio.to_thread(self.create_backup)
        except BackupError as e:
            logger.error(f"Migration aborted: {e}")
            result.errors.append(f"Migration aborted: {e}")
            result.error_count = 1
            return result

        rows = await asyncio.to_thread(self.read_legacy_rows)
        already_migrated = await asyncio.to_thread(self.memory_store.migrated_original_ids)
        migration_date = datetime.now().isoformat()
        logger.info(f"Migrating {len(rows)} legacy memories")

        for row in rows:
            row_id = str(row["id"])
            try:
                legacy = LegacyMemory.from_row(row)
                if not legacy.content.strip() or legacy.id in already_migrated:
                    result.skipped_count += 1
                    continue

                tier, scope, demoted = resolve_legacy_placement(legacy.layer, legacy.content)
                target_project = None
                if scope is MemoryScope.PROJECT:
                    target_project = project_id or legacy.project_path or legacy.metadata.get("project_path")

                metadata = {
                    **legacy.metadata,
                    "migrated_from": MIGRATION_SOURCE,
                    "migration_date": migration_date,
                    "original_id": legacy.id,
                    "legacy_layer": legacy.layer,
                    "original_created_at": legacy.created_at,
                    "original_access_count": legacy.access_count,
                    "content_size": utf8_size(legacy.content),
                }
                if demoted:
                    metadata["demoted_from_core"] = True

                await self.memory_store.store(
                    legacy.content, tier, scope,
                    project_id=target_project,
                    tags=legacy.tags,
                    metadata=metadata,
                )
                already_migrated.add(legacy.id)
                result.migrated_count += 1
                result.details[f"{tier.value}_memories"] += 1
                result.details[f"{scope.value}_memories"] += 1
            except Exception as e:
                logger.error(f"Failed to migrate legacy memory {row_id}: {e}")
                result.error_count += 1
                result.errors.append(f"Failed to migrate memory {row_id}: {e}")

        result.success = result.error_count == 0 or result.migrated_count > 0
        logger.info(
            f"Migration finished: {result.migrated_count} migrated, "
            f"{result.skipped_count} skipped, {result.error_count} errors"
        )
        return result

    async def needs_migration(self) -> bool:
        status = await self.get_migration_status()
        return status["needed"]

    async def get_migration_status(self) -> Dict[str, Any]:
        legacy_count = await asyncio.to_thread(self.count_legacy_memories)
        unified_count = await asyncio.to_thread(self.memory_store.count)
        needed = legacy_count > 0 and unified_count == 0

        recommendations = []
        if needed:
            recommendations.append(f"Migrate {legacy_count} legacy memories to new unified system")
            recommendations.append("Run migration during low-usage period to avoid data loss")
            recommendations.append("Backup will be created automatically before migration")
        elif legacy_count > 0 and unified_count > 0:
            recommendations.append("Migration already completed successfully")
            recommendations.append(f"Currently using unified system with {unified_count} memories")
        elif unified_count > 0:
            recommendations.append(f"Currently using unified system with {unified_count} memories")
        else:
            recommendations.append("No memories found - system ready for new unified architecture")

        return {
            "needed": needed,
            "legacy_count": legacy_count,
            "unified_count": unified_count,
            "recommendations": recommendations,
        }
