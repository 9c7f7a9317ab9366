"""
MCP server entry point for the Unified Memory Store
Copyright 2025 Jurden Bruce

stdout carries the MCP protocol, so logging goes to stderr.
"""

import asyncio
import logging
import os
import sys
import traceback
from typing import Optional

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from . import __version__
from .config import get_config
from .mcp_tools import get_tool_definitions, handle_tool_call
from .memory_store import MemoryStore
from .migration import LegacyMigration

logger = logging.getLogger("unified-memory")

app = Server("unified-memory")

memory_store: Optional[MemoryStore] = None
legacy_migration: Optional[LegacyMigration] = None


def configure_logging():
    logging.basicConfig(
        level=os.getenv("UNIFIED_MEMORY_LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )


@app.list_tools()
async def handle_list_tools() -> list[Tool]:
    """List available memory tools"""
    return get_tool_definitions()


@app.call_tool()
async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch a tool call to the memory store"""
    return await handle_tool_call(name, arguments or {}, memory_store, legacy_migration)


async def run_startup_migration(migration: LegacyMigration):
    """Carry legacy memories over on first start when the unified store is empty"""
    if not await migration.needs_migration():
        return
    logger.info("Legacy memories found and unified store is empty, migrating")
    result = await migration.migrate()
    if result.success:
        logger.info(f"Startup migration complete: {result.migrated_count} migrated, {result.skipped_count} skipped")
    else:
        logger.error(f"Startup migration failed: {'; '.join(result.errors[:5])}")


async def main():
    """Main entry point"""
    global memory_store, legacy_migration

    configure_logging()
    try:
        config = get_config()
        logger.info(f"Initializing MemoryStore at {config['db_path']}")
        memory_store = MemoryStore(config)
        legacy_migration = LegacyMigration(memory_store)

        if os.getenv("UNIFIED_MEMORY_AUTO_MIGRATE", "true").lower() in ("1", "true", "yes"):
            await run_startup_migration(legacy_migration)

        logger.info("Starting MCP server...")
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="unified-memory",
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        logger.error(traceback.format_exc())
        sys.exit(1)
    finally:
        if memory_store:
            await memory_store.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
