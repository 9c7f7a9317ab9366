"""
SQLite persistence store for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

import json
import logging
import sqlite3
import threading
import traceback
from contextlib import contextmanager, suppress
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..errors import StorageUnavailableError
from ..models import CORE_MEMORY_SIZE_LIMIT, Memory, MemoryScope, MemoryTier
from ..utils import register_sqlite_adapters

logger = logging.getLogger("unified-memory.sqlite")

SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS unified_memories (
        id TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        tier TEXT NOT NULL CHECK (tier IN ('core', 'longterm')),
        scope TEXT NOT NULL CHECK (scope IN ('global', 'project')),
        project_id TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        metadata TEXT NOT NULL DEFAULT '{{}}',
        content_size INTEGER NOT NULL CHECK (content_size >= 0),
        created_at TIMESTAMP NOT NULL,
        accessed_at TIMESTAMP NOT NULL,
        access_count INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0),
        CHECK (
            (scope = 'project' AND project_id IS NOT NULL AND project_id != '')
            OR (scope = 'global' AND project_id IS NULL)
        ),
        CHECK (tier != 'core' OR content_size <= {CORE_MEMORY_SIZE_LIMIT})
    );

    CREATE INDEX IF NOT EXISTS idx_tier_scope ON unified_memories(tier, scope);
    CREATE INDEX IF NOT EXISTS idx_project_id ON unified_memories(project_id);
    CREATE INDEX IF NOT EXISTS idx_access_patterns
        ON unified_memories(tier, access_count DESC, accessed_at DESC);
    CREATE INDEX IF NOT EXISTS idx_size_tracking ON unified_memories(tier, content_size);
    CREATE INDEX IF NOT EXISTS idx_created_at ON unified_memories(created_at DESC);
"""


class SQLiteStore:
    """Handles all SQLite database operations"""

    def __init__(self, db_path: Path, error_log: List[Dict[str, Any]], error_log_size: int = 100):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self.error_log = error_log
        self.error_log_size = error_log_size

    def log_error(self, operation: str, error: Exception):
        """Log detailed error information"""
        error_entry = {
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "error_type": type(error).__name__,
            "error_msg": str(error),
            "traceback": traceback.format_exc(),
        }
        self.error_log.append(error_entry)
        # Trim in place, the list is shared with the owning MemoryStore
        if len(self.error_log) > self.error_log_size:
            del self.error_log[:-self.error_log_size]

    def initialize(self):
        """Open the connection and create schema"""
        register_sqlite_adapters()
        try:
            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
                isolation_level="IMMEDIATE",
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            )
            self.conn.row_factory = sqlite3.Row
            with self._lock:
                self.conn.executescript(SCHEMA)
                self.conn.commit()
            logger.info(f"SQLite initialized at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"SQLite initialization failed: {e}")
            self.log_error("sqlite_init", e)
            self.close()
            raise StorageUnavailableError(f"Cannot open memory database {self.db_path}: {e}") from e

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StorageUnavailableError("Memory database is closed")
        return self.conn

    @contextmanager
    def _transaction(self, operation: str, write: bool = False):
        """Yield the connection under the store lock; commit writes, map driver failures"""
        with self._lock:
            conn = self._require_conn()
            try:
                yield conn
                if write:
                    conn.commit()
            except (sqlite3.ProgrammingError, sqlite3.OperationalError) as e:
                logger.error(f"SQLite {operation} failed: {e}")
                self.log_error(operation, e)
                if write:
                    with suppress(sqlite3.Error):
                        conn.rollback()
                raise StorageUnavailableError(f"Memory database unavailable during {operation}: {e}") from e
            except Exception:
                if write:
                    conn.rollback()
                raise

    def insert_memory(self, memory: Memory):
        """Insert a new record; raises sqlite3.IntegrityError on an id collision"""
        with self._transaction("insert_memory", write=True) as conn:
            conn.execute("""
                INSERT INTO unified_memories
                (id, content, tier, scope, project_id, tags, metadata,
                 content_size, created_at, accessed_at, access_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                memory.id, memory.content, memory.tier.value, memory.scope.value,
                memory.project_id, json.dumps(memory.tags), json.dumps(memory.metadata, default=str),
                memory.content_size, memory.created_at, memory.accessed_at, memory.access_count
            ))

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        """Retrieve memory by ID without touching access stats"""
        with self._transaction("get_memory") as conn:
            row = conn.execute("SELECT * FROM unified_memories WHERE id = ?", (memory_id,)).fetchone()
        return Memory.from_row(row) if row else None

    def fetch_memories(
        self,
        tier: Optional[MemoryTier] = None,
        scope: Optional[MemoryScope] = None,
        project_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> List[Memory]:
        """Candidate records matching the filters, oldest first"""
        conditions, params = [], []
        if tier is not None:
            conditions.append("tier = ?")
            params.append(tier.value)
        if scope is not None:
            conditions.append("scope = ?")
            params.append(scope.value)
        if project_id is not None:
            conditions.append("project_id = ?")
            params.append(project_id)
        if exclude_id is not None:
            conditions.append("id != ?")
            params.append(exclude_id)

        sql = "SELECT * FROM unified_memories"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY created_at ASC, id ASC"

        with self._transaction("fetch_memories") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Memory.from_row(row) for row in rows]

    def record_access(self, memory_ids: List[str]) -> Dict[str, Memory]:
        """Count one hit on each id atomically and return the refreshed records"""
        if not memory_ids:
            return {}
        placeholders = ",".join("?" * len(memory_ids))
        with self._transaction("record_access", write=True) as conn:
            conn.execute(f"""
                UPDATE unified_memories
                SET access_count = access_count + 1, accessed_at = ?
                WHERE id IN ({placeholders})
            """, (datetime.now(), *memory_ids))
            rows = conn.execute(
                f"SELECT * FROM unified_memories WHERE id IN ({placeholders})", memory_ids
            ).fetchall()
        return {row["id"]: Memory.from_row(row) for row in rows}

    def update_memory(
        self,
        memory_id: str,
        *,
        content: Optional[str] = None,
        content_size: Optional[int] = None,
        tier: Optional[MemoryTier] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Rewrite the given columns of one record; False when the id is gone"""
        assignments, params = [], []
        if content is not None:
            assignments += ["content = ?", "content_size = ?"]
            params += [content, content_size]
        if tier is not None:
            assignments.append("tier = ?")
            params.append(tier.value)
        if tags is not None:
            assignments.append("tags = ?")
            params.append(json.dumps(tags))
        if metadata is not None:
            assignments.append("metadata = ?")
            params.append(json.dumps(metadata, default=str))
        if not assignments:
            return self.get_memory(memory_id) is not None

        with self._transaction("update_memory", write=True) as conn:
            cursor = conn.execute(
                f"UPDATE unified_memories SET {', '.join(assignments)} WHERE id = ?",
                (*params, memory_id)
            )
            return cursor.rowcount > 0

    def delete_memories(
        self,
        memory_id: str,
        related_ids: Iterable[str] = (),
        neighborhood: Optional[Memory] = None,
    ) -> Tuple[bool, int]:
        """Delete a record and its related records in one transaction.

        With a neighborhood, related records are only deleted while they
        still share its tier, scope and project_id.
        """
        related_ids = list(related_ids)
        with self._transaction("delete_memories", write=True) as conn:
            deleted = conn.execute("DELETE FROM unified_memories WHERE id = ?", (memory_id,)).rowcount > 0
            related_deleted = 0
            if deleted and related_ids:
                placeholders = ",".join("?" * len(related_ids))
                sql = f"DELETE FROM unified_memories WHERE id IN ({placeholders})"
                params = list(related_ids)
                if neighborhood is not None:
                    sql += " AND tier = ? AND scope = ? AND project_id IS ?"
                    params += [neighborhood.tier.value, neighborhood.scope.value, neighborhood.project_id]
                related_deleted = conn.execute(sql, params).rowcount
        return deleted, related_deleted

    def count_memories(self) -> int:
        with self._transaction("count_memories") as conn:
            return conn.execute("SELECT COUNT(*) FROM unified_memories").fetchone()[0]

    def tier_scope_totals(self) -> List[sqlite3.Row]:
        """Record count and byte total per (tier, scope)"""
        with self._transaction("tier_scope_totals") as conn:
            return conn.execute("""
                SELECT tier, scope, COUNT(*) AS count, COALESCE(SUM(content_size), 0) AS size
                FROM unified_memories
                GROUP BY tier, scope
            """).fetchall()

    def core_total_size(self, scope: Optional[MemoryScope] = None, project_id: Optional[str] = None) -> int:
        sql = "SELECT COALESCE(SUM(content_size), 0) FROM unified_memories WHERE tier = 'core'"
        params = []
        if scope is not None:
            sql += " AND scope = ?"
            params.append(scope.value)
        if project_id is not None:
            sql += " AND project_id = ?"
            params.append(project_id)
        with self._transaction("core_total_size") as conn:
            return conn.execute(sql, params).fetchone()[0]

    def migrated_original_ids(self) -> Set[str]:
        """Legacy ids already carried over by a previous migration"""
        with self._transaction("migrated_original_ids") as conn:
            rows = conn.execute("""
                SELECT json_extract(metadata, '$.original_id') AS original_id
                FROM unified_memories
                WHERE json_extract(metadata, '$.original_id') IS NOT NULL
            """).fetchall()
        return {str(row["original_id"]) for row in rows}

    def database_size(self) -> int:
        with self._transaction("database_size") as conn:
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        return page_count * page_size

    def backup_to(self, target: Path) -> int:
        """Copy the live database to target; returns the row count captured"""
        with self._transaction("backup") as conn:
            row_count = conn.execute("SELECT COUNT(*) FROM unified_memories").fetchone()[0]
            dest = sqlite3.connect(str(target))
            try:
                conn.backup(dest)
            finally:
                dest.close()
        logger.info(f"Backed up {row_count} memories to {target}")
        return row_count

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn is None:
                return
            try:
                self.conn.close()
                logger.info("SQLite connection closed")
            except sqlite3.Error as e:
                logger.error(f"Error closing SQLite: {e}")
                self.log_error("close", e)
            finally:
                self.conn = None
