"""
Unified Memory Store
Copyright 2025 Jurden Bruce

Tiered (core / longterm) and scoped (global / project) memory for coding
assistants, served over MCP.
"""

__version__ = "1.0.0"

from .config import get_config
from .errors import BackupError, MemoryStoreError, StorageUnavailableError, ValidationError
from .memory_store import MemoryStore
from .migration import LegacyMigration, MigrationResult
from .models import (
    CORE_MEMORY_SIZE_LIMIT,
    DeleteResult,
    DuplicateCheckResult,
    DuplicateMatch,
    MatchType,
    Memory,
    MemoryScope,
    MemoryTier,
    SearchResult,
    TierMigrationResult,
    derive_metadata,
    validate_memory_fields,
)

__all__ = [
    "__version__",
    "get_config",
    "MemoryStore",
    "LegacyMigration",
    "MigrationResult",
    "Memory",
    "MemoryTier",
    "MemoryScope",
    "MatchType",
    "SearchResult",
    "DuplicateMatch",
    "DuplicateCheckResult",
    "DeleteResult",
    "TierMigrationResult",
    "CORE_MEMORY_SIZE_LIMIT",
    "derive_metadata",
    "validate_memory_fields",
    "MemoryStoreError",
    "ValidationError",
    "StorageUnavailableError",
    "BackupError",
]
