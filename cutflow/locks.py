"""Per-key critical sections.

Batch creation, conflict resolution and invoice generation for one workshop
must not interleave.  Inside a single process the lock below serialises them;
across processes the services additionally take ``SELECT ... FOR UPDATE`` on
the workshop row, which PostgreSQL honours and SQLite ignores.
"""

import threading
from contextlib import contextmanager

_registry_guard = threading.Lock()
_locks = {}


def _lock_for(key):
    with _registry_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


@contextmanager
def keyed_lock(*key):
    lock = _lock_for(key)
    with lock:
        yield


def workshop_lock(workshop_id):
    # internal production has no lane to protect; still serialise on key 0
    return keyed_lock("workshop", workshop_id or 0)
