"""
Configuration for the Unified Memory Store
Copyright 2025 Jurden Bruce

Values come from environment variables; keyword overrides win over both
the environment and the defaults.
"""

import os
from pathlib import Path
from typing import Any, Dict

from .models import CORE_MEMORY_SIZE_LIMIT

_PATH_KEYS = ("home", "db_path", "legacy_db_path", "backup_dir")


def get_config(**overrides) -> Dict[str, Any]:
    home = overrides.pop("home", None) or os.getenv("UNIFIED_MEMORY_HOME") or Path.home() / ".unified-memory"
    home = Path(home).expanduser()

    config = {
        "home": home,
        "db_path": home / "unified.db",
        "legacy_db_path": home / "global.db",
        "backup_dir": home / "backups",
        "core_tier_capacity": int(os.getenv("CORE_TIER_CAPACITY", CORE_MEMORY_SIZE_LIMIT * 10)),
        "duplicate_threshold": float(os.getenv("DUPLICATE_THRESHOLD", 0.7)),
        "search_default_limit": int(os.getenv("SEARCH_DEFAULT_LIMIT", 10)),
        "search_max_limit": int(os.getenv("SEARCH_MAX_LIMIT", 50)),
        "fuzzy_threshold": float(os.getenv("FUZZY_THRESHOLD", 0.3)),
        "cache_maxsize": int(os.getenv("CACHE_MAXSIZE", 1000)),
        "error_log_size": int(os.getenv("ERROR_LOG_SIZE", 100)),
        "analytics_top_n": int(os.getenv("ANALYTICS_TOP_N", 10)),
        "scan_yield_every": 50,
    }
    config.update(overrides)

    for key in _PATH_KEYS:
        config[key] = Path(config[key]).expanduser()
    return config
