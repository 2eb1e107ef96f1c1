"""Deadline-ordered timers with cancellation."""

from __future__ import annotations

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(eq=False)
class TimerToken:
    """A timer entry returned by ``TimerQueue.add``; pass it to ``remove`` to cancel."""

    deadline: float
    item: Any
    _queue: Optional["TimerQueue"] = field(default=None, repr=False)
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        """True while the timer is queued, neither expired nor removed."""
        return self._active


class TimerQueue:
    """Thread-safe multimap of deadlines to items.

    Items with equal deadlines come out in the order they were added.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._heap: list[tuple[float, int, TimerToken]] = []
        self._counter = itertools.count()
        self._live = 0

    def add(self, deadline: float, item: Any) -> TimerToken:
        """Queue ``item`` to expire at ``deadline``."""
        token = TimerToken(deadline, item, self)
        with self._guard:
            heapq.heappush(self._heap, (deadline, next(self._counter), token))
            self._live += 1
        return token

    def remove(self, token: TimerToken) -> bool:
        """Cancel a timer; return False if it already expired, was removed or is foreign."""
        with self._guard:
            if token._queue is not self or not token._active:
                return False
            token._active = False
            self._live -= 1
            self._discard_dead_head()
            return True

    def _discard_dead_head(self) -> None:
        while self._heap and not self._heap[0][2]._active:
            heapq.heappop(self._heap)

    def pop_expired(self, now: float) -> list[Any]:
        """Remove and return, earliest first, every item whose deadline is at or before ``now``."""
        expired: list[Any] = []
        with self._guard:
            self._discard_dead_head()
            while self._heap and self._heap[0][0] <= now:
                _, _, token = heapq.heappop(self._heap)
                token._active = False
                self._live -= 1
                expired.append(token.item)
                self._discard_dead_head()
        return expired

    def next_deadline(self) -> Optional[float]:
        """The earliest pending deadline, or None when nothing is queued."""
        with self._guard:
            self._discard_dead_head()
            return self._heap[0][0] if self._heap else None

    def __len__(self) -> int:
        return self._live