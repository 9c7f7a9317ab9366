"""Tests for the entity layer: validation, derived metadata, ids."""

from datetime import datetime

import pytest

from unified_memory.cache import LRUCache
from unified_memory.config import get_config
from unified_memory.errors import ValidationError
from unified_memory.locks import KeyedLocks
from unified_memory.models import (
    CORE_MEMORY_SIZE_LIMIT,
    MemoryScope,
    MemoryTier,
    derive_metadata,
    generate_memory_id,
    map_legacy_layer,
    normalize_tags,
    validate_memory_fields,
)
from unified_memory.utils import UNKNOWN_TIMESTAMP, _convert_timestamp, project_short_name, utf8_size


class TestValidateMemoryFields:
    """Tests for the shared invariant check."""

    def test_core_limit_is_inclusive(self):
        tier, _, _, size = validate_memory_fields("x" * CORE_MEMORY_SIZE_LIMIT, "core", "global")
        assert tier is MemoryTier.CORE
        assert size == 2048

    def test_core_over_limit_rejected(self):
        with pytest.raises(ValidationError, match="Core memory exceeds 2KB limit") as exc:
            validate_memory_fields("x" * 2049, "core", "global")
        assert exc.value.field == "content"

    def test_longterm_has_no_size_limit(self):
        _, _, _, size = validate_memory_fields("x" * 50_000, "longterm", "global")
        assert size == 50_000

    def test_size_counts_utf8_bytes(self):
        # 700 three-byte characters: 2100 bytes although only 700 characters
        content = "\u20ac" * 700
        assert utf8_size(content) == 2100
        with pytest.raises(ValidationError):
            validate_memory_fields(content, "core", "global")

    def test_project_scope_requires_project_id(self):
        with pytest.raises(ValidationError, match="Project-scoped memories require a project_id"):
            validate_memory_fields("hello", "core", "project")

    def test_blank_project_id_rejected(self):
        with pytest.raises(ValidationError):
            validate_memory_fields("hello", "longterm", "project", "   ")

    def test_global_scope_rejects_project_id(self):
        with pytest.raises(ValidationError) as exc:
            validate_memory_fields("hello", "core", "global", "/work/repo")
        assert exc.value.field == "project_id"

    def test_invalid_tier_and_scope(self):
        with pytest.raises(ValidationError) as exc:
            validate_memory_fields("hello", "archive", "global")
        assert exc.value.field == "tier"
        with pytest.raises(ValidationError) as exc:
            validate_memory_fields("hello", "core", "team")
        assert exc.value.field == "scope"

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            validate_memory_fields("  \n", "core", "global")

    def test_enum_members_accepted(self):
        tier, scope, project_id, _ = validate_memory_fields(
            "hello", MemoryTier.LONGTERM, MemoryScope.PROJECT, "/work/repo"
        )
        assert (tier, scope, project_id) == (MemoryTier.LONGTERM, MemoryScope.PROJECT, "/work/repo")


class TestDerivedMetadata:
    """Tests for derive_metadata."""

    def test_global(self):
        meta = derive_metadata(MemoryTier.CORE, MemoryScope.GLOBAL)
        assert meta["tier_description"].startswith("Core Memory")
        assert meta["scope_description"].startswith("Global")
        assert "project_name" not in meta

    def test_project_name_is_last_path_segment(self):
        meta = derive_metadata(MemoryTier.LONGTERM, MemoryScope.PROJECT, "/home/dev/projects/my-repo/")
        assert meta["project_name"] == "my-repo"
        assert meta["tier_description"].startswith("Long-term Memory")

    def test_project_short_name(self):
        assert project_short_name("github.com/acme/widgets") == "widgets"
        assert project_short_name("C:\\code\\tool") == "tool"
        assert project_short_name("plain") == "plain"
        assert project_short_name(None) is None


class TestHelpers:
    """Tests for ids, tags and the legacy layer table."""

    def test_memory_id_format(self):
        created = datetime(2025, 1, 2, 3, 4, 5)
        memory_id = generate_memory_id(MemoryTier.CORE, MemoryScope.GLOBAL, created)
        tier, scope, millis, suffix = memory_id.split("_")
        assert (tier, scope) == ("core", "global")
        assert int(millis) == int(created.timestamp() * 1000)
        assert len(suffix) == 8

    def test_same_millisecond_ids_differ(self):
        created = datetime.now()
        ids = {generate_memory_id(MemoryTier.LONGTERM, MemoryScope.GLOBAL, created) for _ in range(200)}
        assert len(ids) == 200

    def test_normalize_tags_dedupes_in_order(self):
        assert normalize_tags(["b", "a", "b", " ", "c"]) == ["b", "a", "c"]
        assert normalize_tags(None) == []

    def test_normalize_tags_rejects_string(self):
        with pytest.raises(ValidationError):
            normalize_tags("python,async")

    @pytest.mark.parametrize("layer, expected", [
        ("preference", (MemoryTier.CORE, MemoryScope.GLOBAL)),
        ("system", (MemoryTier.CORE, MemoryScope.GLOBAL)),
        ("project", (MemoryTier.LONGTERM, MemoryScope.PROJECT)),
        ("prompt", (MemoryTier.LONGTERM, MemoryScope.PROJECT)),
        ("scratch", (MemoryTier.LONGTERM, MemoryScope.GLOBAL)),
        (None, (MemoryTier.LONGTERM, MemoryScope.GLOBAL)),
    ])
    def test_legacy_layer_mapping(self, layer, expected):
        assert map_legacy_layer(layer) == expected


class TestSupport:
    """Tests for config, cache and per-record locks."""

    def test_config_paths_follow_home(self, tmp_path):
        config = get_config(home=tmp_path)
        assert config["db_path"] == tmp_path / "unified.db"
        assert config["legacy_db_path"] == tmp_path / "global.db"
        assert config["backup_dir"] == tmp_path / "backups"
        assert config["core_tier_capacity"] == 20480

    def test_config_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("UNIFIED_MEMORY_HOME", str(tmp_path))
        monkeypatch.setenv("SEARCH_MAX_LIMIT", "20")
        config = get_config()
        assert config["home"] == tmp_path
        assert config["search_max_limit"] == 20

    def test_lru_cache_evicts_oldest(self):
        cache = LRUCache(maxsize=2)
        cache["a"] = 1
        cache["b"] = 2
        assert cache["a"] == 1
        cache["c"] = 3
        assert "b" not in cache
        assert cache.get_or_compute("d", lambda key: key.upper()) == "D"
        assert len(cache) == 2

    def test_keyed_locks_are_released(self):
        locks = KeyedLocks()
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_keyed_locks_hold_many(self):
        locks = KeyedLocks()
        with locks.hold_many(["b", "a", "b"]):
            assert len(locks) == 2
        assert len(locks) == 0

    def test_unreadable_timestamp_falls_back(self):
        assert _convert_timestamp(b"not a timestamp") == UNKNOWN_TIMESTAMP
        assert _convert_timestamp(b"2025-06-15T12:00:00") == datetime(2025, 6, 15, 12, 0, 0)
