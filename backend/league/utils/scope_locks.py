"""
In-process advisory locks, one per (stage, group) standings scope.

Recompute is idempotent for a given snapshot, so these only keep two
concurrent requests in this process from doing the same work twice.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional, Tuple

_registry_guard = threading.Lock()
_locks: Dict[Tuple[Hashable, ...], threading.Lock] = {}


def _lock_for(key: Tuple[Hashable, ...]) -> threading.Lock:
    with _registry_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


@contextmanager
def scope_lock(stage_id: int, group_id: Optional[int]) -> Iterator[None]:
    lock = _lock_for(("standings", stage_id, group_id))
    with lock:
        yield

