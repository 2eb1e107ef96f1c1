"""A reader/writer lock for coroutines."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from coroflow.coroutine import Executor, Handle, Suspend


class _State(Enum):
    UNLOCKED = "unlocked"
    LOCKED_SHARED = "locked_shared"
    LOCKED_EXCLUSIVE = "locked_exclusive"


@dataclass
class _Waiter:
    exclusive: bool
    handle: Handle


class SharedScopedLock:
    """Holds a SharedMutex in shared or exclusive mode and releases it once."""

    def __init__(self, shared_mutex: "SharedMutex", exclusive: bool):
        self._shared_mutex: Optional[SharedMutex] = shared_mutex
        self._exclusive = exclusive

    def unlock(self) -> None:
        if self._shared_mutex is not None:
            shared_mutex, self._shared_mutex = self._shared_mutex, None
            if self._exclusive:
                shared_mutex.unlock()
            else:
                shared_mutex.unlock_shared()

    def __enter__(self) -> "SharedScopedLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unlock()


class _LockOperation:
    def __init__(self, shared_mutex: "SharedMutex", exclusive: bool):
        self._shared_mutex = shared_mutex
        self._exclusive = exclusive

    def __await__(self):
        sm, exclusive = self._shared_mutex, self._exclusive
        acquired = sm.try_lock() if exclusive else sm.try_lock_shared()
        if not acquired:
            yield from Suspend(lambda handle: sm._enqueue(handle, exclusive)).__await__()
        return SharedScopedLock(sm, exclusive)


class SharedMutex:
    """Many shared holders or one exclusive holder.

    A waiting exclusive locker blocks new shared lockers so it is not starved.  When
    several shared waiters are woken together they are resumed on the executor.
    """

    def __init__(self, executor: Executor):
        if executor is None:
            raise ValueError("shared mutex requires an executor")
        self._executor = executor
        self._guard = threading.Lock()
        self._state = _State.UNLOCKED
        self._shared_users = 0
        self._exclusive_waiters = 0
        self._waiters: deque[_Waiter] = deque()

    def lock(self) -> _LockOperation:
        """Return an awaitable that acquires the lock exclusively."""
        return _LockOperation(self, True)

    def lock_shared(self) -> _LockOperation:
        """Return an awaitable that acquires the lock in shared mode."""
        return _LockOperation(self, False)

    def _try_lock_locked(self) -> bool:
        if self._state is _State.UNLOCKED:
            self._state = _State.LOCKED_EXCLUSIVE
            return True
        return False

    def _try_lock_shared_locked(self) -> bool:
        if self._state is _State.UNLOCKED:
            self._state = _State.LOCKED_SHARED
            self._shared_users += 1
            return True
        if self._state is _State.LOCKED_SHARED and self._exclusive_waiters == 0:
            self._shared_users += 1
            return True
        return False

    def try_lock(self) -> bool:
        """Acquire exclusively if the mutex is unlocked."""
        with self._guard:
            return self._try_lock_locked()

    def try_lock_shared(self) -> bool:
        """Acquire shared if unlocked, or shared-locked with no exclusive waiter."""
        with self._guard:
            return self._try_lock_shared_locked()

    def _enqueue(self, handle: Handle, exclusive: bool) -> bool:
        with self._guard:
            acquired = self._try_lock_locked() if exclusive else self._try_lock_shared_locked()
            if acquired:
                return False
            self._waiters.append(_Waiter(exclusive, handle))
            if exclusive:
                self._exclusive_waiters += 1
            return True

    def unlock_shared(self) -> None:
        """Release one shared hold; the last one out hands the lock to waiters."""
        with self._guard:
            self._shared_users -= 1
            if self._shared_users != 0:
                return
            if not self._waiters:
                self._state = _State.UNLOCKED
                return
            exclusive_handle, shared_handles = self._wake_waiters_locked()
        self._resume(exclusive_handle, shared_handles)

    def unlock(self) -> None:
        """Release the exclusive hold, handing the lock to the next waiter(s)."""
        with self._guard:
            if not self._waiters:
                self._state = _State.UNLOCKED
                return
            exclusive_handle, shared_handles = self._wake_waiters_locked()
        self._resume(exclusive_handle, shared_handles)

    def _wake_waiters_locked(self) -> tuple[Optional[Handle], list[Handle]]:
        head = self._waiters[0]
        if head.exclusive:
            self._waiters.popleft()
            self._state = _State.LOCKED_EXCLUSIVE
            self._exclusive_waiters -= 1
            return head.handle, []
        self._state = _State.LOCKED_SHARED
        shared: list[Handle] = []
        while self._waiters and not self._waiters[0].exclusive:
            shared.append(self._waiters.popleft().handle)
            self._shared_users += 1
        return None, shared

    def _resume(self, exclusive_handle: Optional[Handle], shared_handles: list[Handle]) -> None:
        if exclusive_handle is not None:
            exclusive_handle.resume()
        for handle in shared_handles:
            self._executor.resume(handle)