"""
LRU Cache implementation for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable


class LRUCache(OrderedDict):
    """LRU cache with max size, shared between worker threads"""
    def __init__(self, maxsize=1000):
        self.maxsize = maxsize
        self._lock = threading.RLock()
        super().__init__()

    def __setitem__(self, key, value):
        with self._lock:
            if key in self:
                self.move_to_end(key)
            super().__setitem__(key, value)
            if len(self) > self.maxsize:
                oldest = next(iter(self))
                del self[oldest]

    def __getitem__(self, key):
        with self._lock:
            value = super().__getitem__(key)
            self.move_to_end(key)
            return value

    def get_or_compute(self, key: Hashable, compute: Callable[[Hashable], Any]) -> Any:
        """Return the cached value for key, computing and caching it on a miss"""
        with self._lock:
            if key in self:
                return self[key]
        value = compute(key)
        self[key] = value
        return value
