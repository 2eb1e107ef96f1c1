"""A FIFO thread pool that resumes coroutine handles on worker threads."""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional, TypeVar

from coroflow.coroutine import Executor, Handle, Suspend

T = TypeVar("T")

_log = logging.getLogger(__name__)


def _default_thread_count() -> int:
    return os.cpu_count() or 1


@dataclass
class ThreadPoolOptions:
    """Configuration of a ThreadPool.

    The start and stop callbacks run on each worker thread and receive the worker's index.
    """

    thread_count: int = field(default_factory=_default_thread_count)
    on_thread_start: Optional[Callable[[int], None]] = None
    on_thread_stop: Optional[Callable[[int], None]] = None


class ThreadPoolShutdownError(RuntimeError):
    """Raised when scheduling onto a thread pool that has been shut down."""


class ThreadPool(Executor):
    """Runs coroutine handles on a fixed set of worker threads in FIFO order.

    Shutting down stops new scheduling but finishes every handle already queued.
    """

    def __init__(self, options: Optional[ThreadPoolOptions] = None):
        self._options = options if options is not None else ThreadPoolOptions()
        self._cv = threading.Condition()
        self._queue: deque[Handle] = deque()
        self._size = 0
        self._stop = False
        self._shutdown_requested = False
        self._threads = [
            threading.Thread(target=self._executor, args=(idx,), name=f"thread-pool-{idx}", daemon=True)
            for idx in range(self._options.thread_count)
        ]
        for thread in self._threads:
            thread.start()

    def thread_count(self) -> int:
        """The number of worker threads."""
        return len(self._threads)

    def _enqueue(self, handle: Handle) -> bool:
        self.resume(handle)
        return True

    def schedule(self) -> Suspend:
        """Return an awaitable that moves the awaiting coroutine onto a worker thread.

        Raises ThreadPoolShutdownError once the pool has been shut down.
        """
        if self._shutdown_requested:
            raise ThreadPoolShutdownError("thread pool is shut down, cannot schedule new tasks")
        return Suspend(self._enqueue)

    async def schedule_call(self, func: Callable[..., T], *args: Any) -> T:
        """Call ``func(*args)`` on a worker thread and return its result."""
        await self.schedule()
        return func(*args)

    def resume(self, handle: Optional[Handle]) -> None:
        """Queue a handle to be resumed by the first free worker; None is ignored."""
        if handle is None:
            return
        with self._cv:
            self._queue.append(handle)
            self._size += 1
            self._cv.notify()

    def resume_all(self, handles: Iterable[Optional[Handle]]) -> None:
        """Queue every non-None handle to be resumed."""
        accepted = [handle for handle in handles if handle is not None]
        if not accepted:
            return
        with self._cv:
            self._queue.extend(accepted)
            self._size += len(accepted)
            self._cv.notify(len(accepted))

    def yield_now(self) -> Suspend:
        """Put the awaiting coroutine at the back of the queue."""
        return self.schedule()

    def shutdown(self) -> None:
        """Stop accepting new work, finish queued handles and join the workers."""
        with self._cv:
            if self._shutdown_requested:
                already = True
            else:
                already = False
                self._shutdown_requested = True
                self._stop = True
                self._cv.notify_all()
        if already:
            return
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join()

    def size(self) -> int:
        """Handles queued plus handles currently running."""
        return self._size

    def empty(self) -> bool:
        return self.size() == 0

    def queue_size(self) -> int:
        """Handles waiting in the queue."""
        return len(self._queue)

    def queue_empty(self) -> bool:
        return self.queue_size() == 0

    def __enter__(self) -> "ThreadPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _executor(self, idx: int) -> None:
        if self._options.on_thread_start is not None:
            self._options.on_thread_start(idx)
        while True:
            with self._cv:
                self._cv.wait_for(lambda: self._queue or self._stop)
                if not self._queue:
                    break
                handle = self._queue.popleft()
            try:
                handle.resume()
            except Exception:
                _log.exception("failed to resume a coroutine handle")
            finally:
                with self._cv:
                    self._size -= 1
        if self._options.on_thread_stop is not None:
            self._options.on_thread_stop(idx)