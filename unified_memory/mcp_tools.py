"""
MCP Tool Definitions and Handlers for the Unified Memory Store
Copyright 2025 Jurden Bruce

All tool responses return JSON for AI consumption, not human-formatted text.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from mcp.types import Tool, TextContent

from .errors import ValidationError
from .migration import LegacyMigration


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime and enum values"""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


logger = logging.getLogger("unified-memory.mcp-tools")

TIER_FILTER = {"type": "string", "enum": ["core", "longterm", "both"], "default": "both"}
SCOPE_FILTER = {"type": "string", "enum": ["global", "project", "both"], "default": "both"}

# Tools missing from this table take no required arguments
REQUIRED_ARGUMENTS: Dict[str, List[str]] = {
    "store_unified_memory": ["content", "tier", "scope"],
    "search_unified_memory": ["query"],
    "delete_unified_memory": ["memory_id"],
    "check_duplicate_memory": ["content"],
    "migrate_memory_tier": ["memory_id", "to_tier"],
}


def get_tool_definitions() -> List[Tool]:
    """Return list of available MCP tools"""
    return [
        Tool(
            name="store_unified_memory",
            description="""Store a memory in the unified tier/scope system.

**Tiers:**
- core: always-on context, 2KB limit per item, ranked first in search
- longterm: unlimited size, for history and reference material

**Scopes:**
- global: applies everywhere (preferences, conventions)
- project: only for the given project_id (required for this scope)
""",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "Content to store"},
                    "tier": {"type": "string", "enum": ["core", "longterm"], "description": "Memory tier"},
                    "scope": {"type": "string", "enum": ["global", "project"], "description": "Memory scope"},
                    "project_id": {"type": "string", "description": "Project identifier (required for project scope)"},
                    "tags": {"type": "array", "items": {"type": "string"}, "description": "Tags array", "default": []},
                    "metadata": {"type": "object", "description": "Additional metadata", "default": {}},
                    "check_duplicates": {"type": "boolean", "description": "Report similar memories before storing", "default": True},
                },
                "required": REQUIRED_ARGUMENTS["store_unified_memory"],
            },
        ),
        Tool(
            name="search_unified_memory",
            description="Lexical search across tiers and scopes. Core memories rank first. Every returned memory counts as accessed.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "tier": TIER_FILTER,
                    "scope": SCOPE_FILTER,
                    "project_id": {"type": "string", "description": "Restrict to one project"},
                    "layer": {"type": "string", "description": "Legacy layer name (preference, system, project, prompt)"},
                    "limit": {"type": "integer", "description": "Max results (1-50)", "default": 10},
                },
                "required": REQUIRED_ARGUMENTS["search_unified_memory"],
            },
        ),
        Tool(
            name="delete_unified_memory",
            description="Delete a memory by ID. With cascade, also deletes near-duplicates in the same tier, scope and project.",
            inputSchema={
                "type": "object",
                "properties": {
                    "memory_id": {"type": "string", "description": "Memory ID"},
                    "cascade": {"type": "boolean", "description": "Delete similar memories too", "default": False},
                },
                "required": REQUIRED_ARGUMENTS["delete_unified_memory"],
            },
        ),
        Tool(
            name="check_duplicate_memory",
            description="Find stored memories similar to the given content. Does not change access statistics.",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string", "description": "Content to check"},
                    "tier": TIER_FILTER,
                    "scope": SCOPE_FILTER,
                    "project_id": {"type": "string", "description": "Restrict to one project"},
                    "threshold": {"type": "number", "description": "Similarity threshold (0.0-1.0)", "default": 0.7},
                },
                "required": REQUIRED_ARGUMENTS["check_duplicate_memory"],
            },
        ),
        Tool(
            name="migrate_memory_tier",
            description="Move a memory between core and longterm tiers. Moving to core re-checks the 2KB limit.",
            inputSchema={
                "type": "object",
                "properties": {
                    "memory_id": {"type": "string", "description": "Memory ID"},
                    "to_tier": {"type": "string", "enum": ["core", "longterm"], "description": "Target tier"},
                    "reason": {"type": "string", "description": "Why the memory is being moved"},
                },
                "required": REQUIRED_ARGUMENTS["migrate_memory_tier"],
            },
        ),
        Tool(
            name="get_unified_memory_stats",
            description="Get memory system statistics (counts per tier and scope, sizes, core utilization)",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_memory_analytics",
            description="Get distribution, storage, access pattern and trend analytics",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_migration_status",
            description="Report whether legacy layer-based memories still need migrating",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="migrate_legacy_memories",
            description="Migrate legacy layer-based memories into the unified system. A verified backup is taken first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": {"type": "string", "description": "Project ID for project-scoped legacy memories"},
                },
            },
        ),
    ]


def _filter(value: Optional[str]) -> Optional[str]:
    """'both' and empty filters mean no filter"""
    if value in (None, "", "both"):
        return None
    return value


def _check_required(name: str, arguments: Dict[str, Any]):
    for key in REQUIRED_ARGUMENTS.get(name, []):
        if arguments.get(key) in (None, ""):
            raise ValidationError(f"Missing required argument: {key}", field=key)


def _json_response(payload: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, cls=DateTimeEncoder))]


async def handle_tool_call(
    name: str,
    arguments: Dict[str, Any],
    memory_store,
    legacy_migration: Optional[LegacyMigration] = None,
) -> List[TextContent]:
    """
    Handle MCP tool calls with JSON responses

    Args:
        name: Tool name
        arguments: Tool arguments
        memory_store: MemoryStore instance
        legacy_migration: LegacyMigration bound to memory_store (created on demand)

    Returns:
        List of TextContent with JSON-encoded responses
    """
    arguments = arguments or {}
    try:
        _check_required(name, arguments)
        if name == "store_unified_memory":
            duplicates = None
            if arguments.get("check_duplicates", True):
                duplicates = await memory_store.check_duplicate(
                    arguments["content"],
                    tier=arguments["tier"],
                    scope=arguments["scope"],
                    project_id=arguments.get("project_id"),
                )
            memory_id = await memory_store.store(
                arguments["content"],
                arguments["tier"],
                arguments["scope"],
                project_id=arguments.get("project_id"),
                tags=arguments.get("tags"),
                metadata=arguments.get("metadata"),
            )
            response = {
                "success": True,
                "memory_id": memory_id,
                "tier": arguments["tier"],
                "scope": arguments["scope"],
            }
            if duplicates is not None and duplicates.is_duplicate:
                response["similar_memories"] = [d.to_dict() for d in duplicates.duplicates]
                response["recommendation"] = duplicates.recommendation
            return _json_response(response)

        elif name == "search_unified_memory":
            results = await memory_store.search(
                arguments["query"],
                tier=_filter(arguments.get("tier")),
                scope=_filter(arguments.get("scope")),
                project_id=arguments.get("project_id"),
                layer=arguments.get("layer"),
                limit=arguments.get("limit"),
            )
            return _json_response({
                "success": True,
                "query": arguments["query"],
                "count": len(results),
                "results": [r.to_dict() for r in results],
            })

        elif name == "delete_unified_memory":
            result = await memory_store.delete(arguments["memory_id"], cascade=arguments.get("cascade", False))
            return _json_response({"success": result.deleted, **result.to_dict()})

        elif name == "check_duplicate_memory":
            result = await memory_store.check_duplicate(
                arguments["content"],
                tier=_filter(arguments.get("tier")),
                scope=_filter(arguments.get("scope")),
                project_id=arguments.get("project_id"),
                threshold=arguments.get("threshold"),
            )
            return _json_response({"success": True, **result.to_dict()})

        elif name == "migrate_memory_tier":
            result = await memory_store.migrate_tier(
                arguments["memory_id"], arguments["to_tier"], reason=arguments.get("reason")
            )
            return _json_response({"success": result.migrated, **result.to_dict()})

        elif name == "get_unified_memory_stats":
            return _json_response({"success": True, **memory_store.get_stats()})

        elif name == "get_memory_analytics":
            return _json_response({"success": True, **await memory_store.get_analytics()})

        elif name == "get_migration_status":
            migration = legacy_migration or LegacyMigration(memory_store)
            return _json_response({"success": True, **await migration.get_migration_status()})

        elif name == "migrate_legacy_memories":
            migration = legacy_migration or LegacyMigration(memory_store)
            result = await migration.migrate(project_id=arguments.get("project_id"))
            return _json_response(result.to_dict())

        else:
            return _json_response({"success": False, "error": f"Unknown tool: {name}", "type": "UnknownTool"})

    except ValidationError as e:
        logger.warning(f"Rejected {name}: {e}")
        return _json_response({
            "success": False,
            "error": str(e),
            "field": e.field,
            "tool": name,
            "type": type(e).__name__,
        })
    except Exception as e:
        logger.error(f"Tool execution error: {name}: {e}", exc_info=True)
        return _json_response({
            "success": False,
            "error": str(e),
            "tool": name,
            "type": type(e).__name__,
        })
