"""
Exception hierarchy for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

from typing import Optional


class MemoryStoreError(Exception):
    """Base class for every error raised by the memory store"""


class ValidationError(MemoryStoreError):
    """A write or query was rejected before touching storage"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StorageUnavailableError(MemoryStoreError):
    """The database is closed or cannot be reached"""


class BackupError(MemoryStoreError):
    """A pre-migration snapshot could not be written or verified"""
