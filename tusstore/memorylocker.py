"""In-memory locking of uploads.

Locks live only as long as the locker object is referenced and are lost
when the process exits.
"""

from __future__ import annotations

import threading

from .errors import FileLockedError


class MemoryLocker:
    """Hands out exclusive per-upload locks kept in process memory."""

    def __init__(self):
        self._locks: set[str] = set()
        self._mutex = threading.Lock()

    def new_lock(self, id: str) -> MemoryLock:
        """Return a lock object for the upload with the given id."""
        return MemoryLock(self, id)

    def _acquire(self, id: str) -> None:
        with self._mutex:
            if id in self._locks:
                raise FileLockedError()
            self._locks.add(id)

    def _release(self, id: str) -> None:
        with self._mutex:
            self._locks.discard(id)


class MemoryLock:
    """An exclusive lock on one upload, managed by a MemoryLocker."""

    def __init__(self, locker: MemoryLocker, id: str):
        self.locker = locker
        self.id = id

    def lock(self) -> None:
        """Obtain the lock; raise FileLockedError if it is already held."""
        self.locker._acquire(self.id)

    def unlock(self) -> None:
        """Release the lock. Releasing a lock that is not held does nothing."""
        self.locker._release(self.id)

    def __enter__(self) -> MemoryLock:
        self.lock()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unlock()