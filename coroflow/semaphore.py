"""A counting semaphore for coroutines."""

from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Optional

from coroflow.coroutine import Handle, Suspend


class AcquireResult(Enum):
    """Outcome of awaiting ``Semaphore.acquire()``."""

    ACQUIRED = "acquired"
    SEMAPHORE_STOPPED = "semaphore_stopped"

    def __str__(self) -> str:
        return self.value


class _Waiter:
    __slots__ = ("handle", "result")

    def __init__(self) -> None:
        self.handle: Optional[Handle] = None
        self.result = AcquireResult.SEMAPHORE_STOPPED


class _AcquireOperation:
    def __init__(self, semaphore: "Semaphore"):
        self._semaphore = semaphore

    def __await__(self):
        semaphore = self._semaphore
        if semaphore._stopped:
            return AcquireResult.SEMAPHORE_STOPPED
        if semaphore.try_acquire():
            return AcquireResult.ACQUIRED
        waiter = _Waiter()
        yield from Suspend(lambda handle: semaphore._enqueue(waiter, handle)).__await__()
        return waiter.result


class Semaphore:
    """Counts available resources; acquirers suspend while none are available."""

    def __init__(self, least_max_value: int, starting_value: Optional[int] = None):
        if starting_value is None:
            starting_value = least_max_value
        if least_max_value < 0 or starting_value < 0:
            raise ValueError("semaphore values must not be negative")
        if starting_value > least_max_value:
            raise ValueError("starting value cannot exceed the maximum value")
        self._max = least_max_value
        self._counter = starting_value
        self._guard = threading.Lock()
        self._waiters: deque[_Waiter] = deque()
        self._stopped = False

    def acquire(self) -> _AcquireOperation:
        """Return an awaitable that yields an AcquireResult once a resource is taken."""
        return _AcquireOperation(self)

    def try_acquire(self) -> bool:
        """Take a resource if one is available right now."""
        with self._guard:
            if self._stopped or self._counter <= 0:
                return False
            self._counter -= 1
            return True

    def _enqueue(self, waiter: _Waiter, handle: Handle) -> bool:
        with self._guard:
            if self._stopped:
                waiter.result = AcquireResult.SEMAPHORE_STOPPED
                return False
            if self._counter > 0:
                self._counter -= 1
                waiter.result = AcquireResult.ACQUIRED
                return False
            waiter.handle = handle
            self._waiters.append(waiter)
            return True

    def release(self) -> None:
        """Return a resource, passing it directly to the oldest waiter if there is one."""
        with self._guard:
            if self._stopped:
                return
            if not self._waiters:
                if self._counter < self._max:
                    self._counter += 1
                return
            waiter = self._waiters.popleft()
            waiter.result = AcquireResult.ACQUIRED
        waiter.handle.resume()

    def max(self) -> int:
        """The maximum number of resources the semaphore can hold."""
        return self._max

    def value(self) -> int:
        """The number of resources currently available."""
        return self._counter

    def notify_waiters(self) -> None:
        """Stop the semaphore and wake every waiter with SEMAPHORE_STOPPED; cannot be undone."""
        with self._guard:
            self._stopped = True
            waiters, self._waiters = list(self._waiters), deque()
        for waiter in waiters:
            waiter.result = AcquireResult.SEMAPHORE_STOPPED
            waiter.handle.resume()