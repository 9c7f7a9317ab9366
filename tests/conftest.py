"""Test fixtures for the Unified Memory Store."""

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

import pytest

from unified_memory.config import get_config
from unified_memory.memory_store import MemoryStore
from unified_memory.migration import LegacyMigration

LEGACY_SCHEMA = """
    CREATE TABLE memories (
        id TEXT PRIMARY KEY,
        layer TEXT NOT NULL,
        content TEXT NOT NULL,
        tags TEXT,
        metadata TEXT,
        project_path TEXT,
        created_at TEXT NOT NULL,
        accessed_at TEXT,
        access_count INTEGER DEFAULT 0
    )
"""


@pytest.fixture
def memory_config(tmp_path: Path) -> Dict[str, Any]:
    """Config rooted in a temporary home directory."""
    return get_config(home=tmp_path)


@pytest.fixture
def memory_store(memory_config):
    store = MemoryStore(memory_config)
    yield store
    store.close()


def write_legacy_db(path: Path, rows: List[Dict[str, Any]]) -> Path:
    """Create a legacy layer-based database holding rows."""
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(LEGACY_SCHEMA)
        for i, row in enumerate(rows):
            conn.execute(
                """
                INSERT INTO memories
                (id, layer, content, tags, metadata, project_path, created_at, accessed_at, access_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    row.get("id", f"legacy-{i}"),
                    row.get("layer", "preference"),
                    row.get("content", f"legacy memory {i}"),
                    row.get("tags", json.dumps([])),
                    row.get("metadata", json.dumps({})),
                    row.get("project_path"),
                    row.get("created_at", f"2024-01-{i % 28 + 1:02d}T10:00:00"),
                    row.get("accessed_at"),
                    row.get("access_count", 0),
                ),
            )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def legacy_db(memory_config):
    """Factory writing a legacy database at the configured legacy path."""
    def _make(rows: List[Dict[str, Any]]) -> Path:
        return write_legacy_db(memory_config["legacy_db_path"], rows)
    return _make


@pytest.fixture
def migration(memory_store):
    return LegacyMigration(memory_store)
