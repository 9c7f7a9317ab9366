"""
Data models for the Unified Memory Store
Copyright 2025 Jurden Bruce

A memory lives in one tier (core or longterm) and one scope (global or
project). validate_memory_fields() is the single gate every write path goes
through; derive_metadata() recomputes the descriptive metadata so it never
drifts from tier/scope.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .utils import epoch_millis, project_short_name, utf8_size

CORE_MEMORY_SIZE_LIMIT = 2048  # bytes, per core item


class MemoryTier(str, Enum):
    CORE = "core"
    LONGTERM = "longterm"


class MemoryScope(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"  # reserved, lexical scoring never produces it


TIER_PRIORITY = {MemoryTier.CORE: 0, MemoryTier.LONGTERM: 1}

TIER_DESCRIPTIONS = {
    MemoryTier.CORE: "Core Memory - Always accessible, 2KB limit per item, high priority in search",
    MemoryTier.LONGTERM: "Long-term Memory - Unlimited storage, archived when not accessed",
}

SCOPE_DESCRIPTIONS = {
    MemoryScope.GLOBAL: "Global - Available across all projects and contexts",
    MemoryScope.PROJECT: "Project-specific - Only available within this project context",
}

LEGACY_LAYER_MAPPING = {
    "preference": (MemoryTier.CORE, MemoryScope.GLOBAL),
    "system": (MemoryTier.CORE, MemoryScope.GLOBAL),
    "project": (MemoryTier.LONGTERM, MemoryScope.PROJECT),
    "prompt": (MemoryTier.LONGTERM, MemoryScope.PROJECT),
}


def map_legacy_layer(layer: Optional[str]) -> Tuple[MemoryTier, MemoryScope]:
    """Tier/scope pair for a legacy layer name; unknown layers land in longterm/global"""
    return LEGACY_LAYER_MAPPING.get(layer, (MemoryTier.LONGTERM, MemoryScope.GLOBAL))


def parse_tier(value: Any) -> MemoryTier:
    try:
        return MemoryTier(value)
    except ValueError:
        raise ValidationError(
            f"Invalid tier '{value}'. Must be one of: core, longterm", field="tier"
        ) from None


def parse_scope(value: Any) -> MemoryScope:
    try:
        return MemoryScope(value)
    except ValueError:
        raise ValidationError(
            f"Invalid scope '{value}'. Must be one of: global, project", field="scope"
        ) from None


def validate_memory_fields(
    content: Any,
    tier: Any,
    scope: Any,
    project_id: Optional[str] = None,
) -> Tuple[MemoryTier, MemoryScope, Optional[str], int]:
    """Check a record's content/tier/scope/project against every invariant.

    Returns the normalized (tier, scope, project_id, content_size). Raises
    ValidationError naming the offending field.
    """
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Memory content is required", field="content")

    tier = parse_tier(tier)
    scope = parse_scope(scope)

    if project_id is not None and not isinstance(project_id, str):
        raise ValidationError("project_id must be a string", field="project_id")

    if scope is MemoryScope.PROJECT:
        if not project_id or not project_id.strip():
            raise ValidationError("Project-scoped memories require a project_id", field="project_id")
        project_id = project_id.strip()
    else:
        if project_id:
            raise ValidationError("Global memories cannot have a project_id", field="project_id")
        project_id = None

    content_size = utf8_size(content)
    if tier is MemoryTier.CORE and content_size > CORE_MEMORY_SIZE_LIMIT:
        raise ValidationError(
            f"Core memory exceeds 2KB limit ({content_size} bytes). Use 'longterm' tier instead.",
            field="content",
        )

    return tier, scope, project_id, content_size


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Deduplicate tags keeping first-seen order"""
    if tags is None:
        return []
    if isinstance(tags, str):
        raise ValidationError("Tags must be a list of strings", field="tags")
    tags = list(tags)
    if not all(isinstance(t, str) for t in tags):
        raise ValidationError("Tags must be a list of strings", field="tags")
    return list(dict.fromkeys(t.strip() for t in tags if t.strip()))


def derive_metadata(tier: MemoryTier, scope: MemoryScope, project_id: Optional[str] = None) -> Dict[str, Any]:
    derived = {
        "tier_description": TIER_DESCRIPTIONS[tier],
        "scope_description": SCOPE_DESCRIPTIONS[scope],
    }
    if scope is MemoryScope.PROJECT and project_id:
        derived["project_name"] = project_short_name(project_id)
    return derived


def generate_memory_id(tier: MemoryTier, scope: MemoryScope, created_at: datetime) -> str:
    return f"{tier.value}_{scope.value}_{epoch_millis(created_at)}_{uuid.uuid4().hex[:8]}"


@dataclass
class Memory:
    id: str
    content: str
    tier: MemoryTier
    scope: MemoryScope
    project_id: Optional[str]
    tags: List[str]
    metadata: Dict[str, Any]
    content_size: int
    created_at: datetime
    accessed_at: datetime
    access_count: int = 0

    def __post_init__(self):
        self.tier = MemoryTier(self.tier)
        self.scope = MemoryScope(self.scope)
        if self.tags is None:
            self.tags = []
        if self.metadata is None:
            self.metadata = {}
        if isinstance(self.created_at, str):
            self.created_at = datetime.fromisoformat(self.created_at)
        if isinstance(self.accessed_at, str):
            self.accessed_at = datetime.fromisoformat(self.accessed_at)

    @property
    def context(self) -> str:
        """Human readable placement, e.g. "CORE/PROJECT (my-repo)" """
        label = f"{self.tier.value.upper()}/{self.scope.value.upper()}"
        if self.project_id:
            label += f" ({project_short_name(self.project_id)})"
        return label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "tier": self.tier.value,
            "scope": self.scope.value,
            "project_id": self.project_id,
            "tags": self.tags,
            "metadata": self.metadata,
            "content_size": self.content_size,
            "created_at": self.created_at.isoformat(),
            "accessed_at": self.accessed_at.isoformat(),
            "access_count": self.access_count,
        }

    @classmethod
    def from_row(cls, row) -> "Memory":
        """Create Memory from a unified_memories row"""
        return cls(
            id=row["id"],
            content=row["content"],
            tier=row["tier"],
            scope=row["scope"],
            project_id=row["project_id"],
            tags=json.loads(row["tags"]) if row["tags"] else [],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            content_size=row["content_size"],
            created_at=row["created_at"],
            accessed_at=row["accessed_at"],
            access_count=row["access_count"],
        )


@dataclass
class SearchResult:
    memory: Memory
    score: float
    match_type: MatchType

    @property
    def context(self) -> str:
        return self.memory.context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": self.memory.to_dict(),
            "score": round(self.score, 4),
            "match_type": self.match_type.value,
            "context": self.context,
        }


@dataclass
class DuplicateMatch:
    memory: Memory
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {"memory": self.memory.to_dict(), "similarity": round(self.similarity, 4)}


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    duplicates: List[DuplicateMatch]
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_duplicate": self.is_duplicate,
            "duplicates": [d.to_dict() for d in self.duplicates],
            "recommendation": self.recommendation,
        }


@dataclass
class DeleteResult:
    deleted: bool
    message: str
    related_deleted: int = 0
    related_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted": self.deleted,
            "related_deleted": self.related_deleted,
            "related_ids": self.related_ids,
            "message": self.message,
        }


@dataclass
class TierMigrationResult:
    migrated: bool
    from_tier: Optional[MemoryTier]
    to_tier: MemoryTier
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migrated": self.migrated,
            "from_tier": self.from_tier.value if self.from_tier else None,
            "to_tier": self.to_tier.value,
            "message": self.message,
        }
