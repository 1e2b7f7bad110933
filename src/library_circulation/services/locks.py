"""
In-process locks keyed by entity.

Reserve and Fulfill for one title must not interleave: the queue tail append
and the head-of-queue copy assignment each read then write the same rows.
Holding the title's lock for the whole transaction (including commit) makes
them run one at a time within this process; the database indexes and copy
version column cover writers in other processes.
"""

import threading
import weakref
from collections.abc import Generator, Hashable
from contextlib import contextmanager


class KeyedLocks:
    """A registry of re-entrant locks that lives only as long as they are held.

    Entries are weakly referenced, so a key's lock is dropped once no thread
    holds or waits on it and the registry stays as small as the set of titles
    currently being worked on.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[Hashable, threading.RLock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Generator[None, None, None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every reservation manager in the process
book_locks = KeyedLocks()
