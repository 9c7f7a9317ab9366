"""
Utility functions for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

import re
import sqlite3
import logging
from datetime import datetime
from typing import Optional

logger = logging.getLogger("unified-memory.utils")

_PATH_SEPARATORS = re.compile(r"[\\/]+")


# Substituted for stored timestamps that cannot be parsed
UNKNOWN_TIMESTAMP = datetime.fromtimestamp(0)


# Register datetime adapters for Python 3.12+ compatibility
def _adapt_datetime(dt):
    """Convert datetime to ISO format string for SQLite storage"""
    return dt.isoformat()


def _convert_timestamp(val):
    """Convert timestamp string to datetime with error handling"""
    try:
        decoded = val.decode() if isinstance(val, bytes) else val
        return datetime.fromisoformat(decoded)
    except (ValueError, TypeError, AttributeError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to convert timestamp: {val!r}, error: {e}")
        return UNKNOWN_TIMESTAMP


def register_sqlite_adapters():
    sqlite3.register_adapter(datetime, _adapt_datetime)
    sqlite3.register_converter("TIMESTAMP", _convert_timestamp)


def utf8_size(text: str) -> int:
    """Size of text in bytes once encoded as UTF-8"""
    return len(text.encode("utf-8"))


def epoch_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def project_short_name(project_id: Optional[str]) -> Optional[str]:
    """Last path segment of a project id ("/home/me/repo/" -> "repo")"""
    if not project_id:
        return None
    segments = [s for s in _PATH_SEPARATORS.split(project_id.strip()) if s]
    return segments[-1] if segments else project_id


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
