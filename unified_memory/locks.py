"""
Per-record locking for the Unified Memory Store
Copyright 2025 Jurden Bruce
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, List


class KeyedLocks:
    """One mutex per record id, created on demand and dropped when idle.

    Read-modify-write sequences on the same id are serialized while
    different ids proceed independently.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @contextmanager
    def hold_many(self, keys: Iterable[str]):
        """Hold several keys at once, always acquired in sorted order"""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield

    def __len__(self):
        with self._guard:
            return len(self._locks)
