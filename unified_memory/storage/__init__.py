"""
Storage backends for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

from .sqlite_store import SQLiteStore

__all__ = ["SQLiteStore"]
