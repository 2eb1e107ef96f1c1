"""Poll operations, their outcomes and the state shared by an fd wait and its timeout."""

from __future__ import annotations

import selectors
import threading
from enum import Enum, IntFlag
from typing import Any, Optional

from coroflow.coroutine import Handle, Suspend


class PollOp(IntFlag):
    """What to wait for on a file descriptor."""

    READ = selectors.EVENT_READ
    WRITE = selectors.EVENT_WRITE
    READ_WRITE = selectors.EVENT_READ | selectors.EVENT_WRITE


class PollStatus(Enum):
    """How a poll finished."""

    EVENT = "event"
    TIMEOUT = "timeout"
    ERROR = "error"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class PollInfo:
    """Everything about one poll: the fd, its paired timer and the waiting coroutine.

    The fd event and its timeout may both fire.  Only the first call to ``complete()``
    wins; later ones are discarded.  Awaiting a PollInfo suspends until it is completed
    and then yields the winning status.
    """

    def __init__(self, fd: int = -1):
        self.fd = fd
        self.timer_token: Optional[Any] = None
        self.status = PollStatus.ERROR
        self._processed = False
        self._handle: Optional[Handle] = None
        self._guard = threading.Lock()

    @property
    def processed(self) -> bool:
        """True once an event or timeout has completed this poll."""
        return self._processed

    def _attach(self, handle: Handle) -> bool:
        with self._guard:
            if self._processed:
                return False
            self._handle = handle
            return True

    def __await__(self):
        yield from Suspend(self._attach).__await__()
        return self.status

    def complete(self, status: PollStatus) -> Optional[Handle]:
        """Record the outcome if nothing has completed this poll yet.

        Returns the suspended coroutine's handle for the caller to resume, or None when
        this call lost the race or the coroutine has not suspended yet (it will then
        carry on without suspending).
        """
        with self._guard:
            if self._processed:
                return None
            self._processed = True
            self.status = status
            handle, self._handle = self._handle, None
            return handle