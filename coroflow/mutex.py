"""A mutual exclusion lock for coroutines."""

from __future__ import annotations

import threading

from coroflow.coroutine import Handle, Suspend


class ScopedLock:
    """Owns a locked Mutex; releases it exactly once, explicitly or at the end of a with block."""

    def __init__(self, mutex: "Mutex"):
        self._mutex: Mutex | None = mutex

    def unlock(self) -> None:
        held, self._mutex = self._mutex, None
        if held is not None:
            held.unlock()

    def __enter__(self) -> "ScopedLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unlock()


class _LockOperation:
    def __init__(self, mutex: "Mutex"):
        self._mutex = mutex

    def __await__(self):
        mutex = self._mutex
        if not mutex.try_lock():
            # On resumption the unlocking holder has already handed ownership over.
            yield from Suspend(lambda handle: not mutex._acquire_or_queue(handle)).__await__()
        return ScopedLock(mutex)


class Mutex:
    """Coroutine mutex; waiters suspend instead of blocking the thread.

    Ownership passes straight from the unlocking holder to a waiter.  Waiters that queued
    since the last hand-over are served most recent first.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locked = False
        self._pending: list[Handle] = []
        self._internal: list[Handle] = []

    def lock(self) -> _LockOperation:
        """Return an awaitable that acquires the mutex and yields a ScopedLock."""
        return _LockOperation(self)

    def try_lock(self) -> bool:
        return self._acquire_or_queue(None)

    def _acquire_or_queue(self, handle: Handle | None) -> bool:
        """Take the mutex if free; otherwise queue ``handle`` (when given) and return False."""
        with self._guard:
            if not self._locked:
                self._locked = True
                return True
            if handle is not None:
                self._pending.append(handle)
            return False

    def unlock(self) -> None:
        """Release the mutex, handing it to a waiter if there is one."""
        with self._guard:
            if not self._locked:
                raise RuntimeError("unlock of an unlocked mutex")
            if not self._internal:
                if not self._pending:
                    self._locked = False
                    return
                self._internal, self._pending = self._pending, []
            successor = self._internal.pop()
        successor.resume()