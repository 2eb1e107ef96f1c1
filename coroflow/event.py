"""A manually set signal that many coroutines can await."""

from __future__ import annotations

import threading
from enum import Enum

from coroflow.coroutine import Executor, Handle, Suspend


class ResumeOrderPolicy(Enum):
    """Order in which waiters are resumed when an event is set."""

    LIFO = "lifo"
    FIFO = "fifo"


class Event:
    """Thread-safe event; awaiting coroutines resume once it is set.

    The event can be reset to the unset state and used again.
    """

    def __init__(self, initially_set: bool = False):
        self._guard = threading.Lock()
        self._set = initially_set
        self._waiters: list[Handle] = []

    def is_set(self) -> bool:
        return self._set

    def _take_waiters(self, policy: ResumeOrderPolicy) -> list[Handle]:
        with self._guard:
            if self._set:
                return []
            self._set = True
            waiters, self._waiters = self._waiters, []
        if policy is ResumeOrderPolicy.LIFO:
            waiters.reverse()
        return waiters

    def set(self, policy: ResumeOrderPolicy = ResumeOrderPolicy.LIFO) -> None:
        """Set the event and resume every waiter on the calling thread."""
        for handle in self._take_waiters(policy):
            handle.resume()

    def set_on(self, executor: Executor, policy: ResumeOrderPolicy = ResumeOrderPolicy.LIFO) -> None:
        """Set the event and hand every waiter to the given executor."""
        for handle in self._take_waiters(policy):
            executor.resume(handle)

    def reset(self) -> None:
        """Return a set event to the unset state; no effect otherwise."""
        with self._guard:
            self._set = False

    def _enqueue(self, handle: Handle) -> bool:
        with self._guard:
            if self._set:
                return False
            self._waiters.append(handle)
            return True

    def __await__(self):
        if self._set:
            return
        yield from Suspend(self._enqueue).__await__()