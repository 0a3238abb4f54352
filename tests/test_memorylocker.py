import threading

import pytest

from tusstore.errors import FileLockedError
from tusstore.memorylocker import MemoryLocker


def test_memory_locker():
    locker = MemoryLocker()

    lock1 = locker.new_lock("one")
    lock1.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()

    lock2 = locker.new_lock("one")
    with pytest.raises(FileLockedError):
        lock2.lock()

    lock1.unlock()
    lock1.unlock()

    lock2.lock()
    with pytest.raises(FileLockedError):
        lock1.lock()


def test_different_ids_do_not_conflict():
    locker = MemoryLocker()
    first = locker.new_lock("one")
    second = locker.new_lock("two")
    first.lock()
    second.lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("two").lock()


def test_lockers_are_independent():
    a = MemoryLocker()
    b = MemoryLocker()
    a.new_lock("one").lock()
    b.new_lock("one").lock()
    with pytest.raises(FileLockedError):
        b.new_lock("one").lock()


def test_context_manager_releases_lock():
    locker = MemoryLocker()
    with locker.new_lock("one"):
        with pytest.raises(FileLockedError):
            locker.new_lock("one").lock()
    other = locker.new_lock("one")
    other.lock()
    with pytest.raises(FileLockedError):
        locker.new_lock("one").lock()


def test_only_one_thread_obtains_lock():
    locker = MemoryLocker()
    successes = []
    failures = []
    barrier = threading.Barrier(16)

    def worker():
        barrier.wait()
        try:
            locker.new_lock("shared").lock()
            successes.append(1)
        except FileLockedError:
            failures.append(1)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(successes) == 1
    assert len(failures) == 15
    with pytest.raises(FileLockedError):
        locker.new_lock("shared").lock()