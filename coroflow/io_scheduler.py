"""An event loop that resumes coroutines on fd readiness, timers and explicit scheduling."""

from __future__ import annotations

import logging
import os
import selectors
import socket
import threading
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from time import monotonic
from typing import Any, Optional, Union

from coroflow.coroutine import Executor, Handle, Suspend
from coroflow.poll import PollInfo, PollOp, PollStatus
from coroflow.thread_pool import ThreadPool, ThreadPoolOptions
from coroflow.timer_queue import TimerQueue, TimerToken

_log = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 1.0
_WAKE = object()


class ThreadStrategy(Enum):
    """Who drives the event loop."""

    SPAWN = "spawn"
    MANUAL = "manual"


class ExecutionStrategy(Enum):
    """Where resumed coroutines run."""

    PROCESS_TASKS_ON_THREAD_POOL = "process_tasks_on_thread_pool"
    PROCESS_TASKS_INLINE = "process_tasks_inline"


def _default_pool_options() -> ThreadPoolOptions:
    cpus = os.cpu_count() or 1
    return ThreadPoolOptions(thread_count=cpus - 1 if cpus > 1 else 1)


@dataclass
class IoSchedulerOptions:
    """Configuration of an IoScheduler.

    With ``ThreadStrategy.MANUAL`` the caller drives the loop through ``process_events()``.
    The thread callbacks run on the dedicated event thread when one is spawned.
    """

    thread_strategy: ThreadStrategy = ThreadStrategy.SPAWN
    on_io_thread_start: Optional[Callable[[], None]] = None
    on_io_thread_stop: Optional[Callable[[], None]] = None
    pool: ThreadPoolOptions = field(default_factory=_default_pool_options)
    execution_strategy: ExecutionStrategy = ExecutionStrategy.PROCESS_TASKS_ON_THREAD_POOL


FileDescriptor = Union[int, Any]


def _fileno(fd: FileDescriptor) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


class IoScheduler(Executor):
    """Resumes coroutines when file descriptors become ready, timers expire or work is scheduled.

    Resumed coroutines run either inline on the event thread or on an owned thread pool.
    """

    def __init__(self, options: Optional[IoSchedulerOptions] = None):
        self._options = options if options is not None else IoSchedulerOptions()
        self._inline = self._options.execution_strategy is ExecutionStrategy.PROCESS_TASKS_INLINE

        self._selector = selectors.DefaultSelector()
        self._selector_guard = threading.Lock()
        self._wake_recv, self._wake_send = socket.socketpair()
        self._wake_recv.setblocking(False)
        self._wake_send.setblocking(False)
        self._selector.register(self._wake_recv, selectors.EVENT_READ, _WAKE)

        self._scheduled_guard = threading.Lock()
        self._scheduled: list[Handle] = []
        self._wake_pending = False

        self._size_guard = threading.Lock()
        self._size = 0

        self._timers = TimerQueue()
        self._state_guard = threading.Lock()
        self._shutdown_requested = False
        self._closed = False
        self._processing = threading.Lock()

        self._owned_guard = threading.Lock()
        self._owned: set[Handle] = set()

        self._thread_pool: Optional[ThreadPool] = None if self._inline else ThreadPool(self._options.pool)

        self._io_thread: Optional[threading.Thread] = None
        if self._options.thread_strategy is ThreadStrategy.SPAWN:
            self._io_thread = threading.Thread(target=self._run_dedicated, name="io-scheduler", daemon=True)
            self._io_thread.start()

    # -- bookkeeping -----------------------------------------------------------------

    def _add_size(self, amount: int) -> None:
        with self._size_guard:
            self._size += amount

    def _wake(self, force: bool = False) -> None:
        with self._scheduled_guard:
            if self._wake_pending and not force:
                return
            self._wake_pending = True
            try:
                self._wake_send.send(b"\x01")
            except OSError:
                pass

    def _queue_inline(self, handle: Handle) -> None:
        with self._scheduled_guard:
            self._scheduled.append(handle)
        self._wake()

    # -- public API ------------------------------------------------------------------

    def process_events(self, timeout: Optional[float] = 0.0) -> int:
        """Process ready events once and return the number of live tasks.

        ``timeout`` is how many seconds to wait for an event; zero only checks what is
        ready now, and None or a negative value waits until something happens.  Does
        nothing if another thread is already processing events.
        """
        if timeout is not None and timeout < 0:
            timeout = None
        if not self._closed and self._processing.acquire(blocking=False):
            try:
                self._execute(timeout)
            finally:
                self._processing.release()
        return self.size()

    def _on_schedule(self, handle: Handle) -> bool:
        if self._inline:
            self._add_size(1)
            self._queue_inline(handle)
        else:
            self._thread_pool.resume(handle)
        return True

    def schedule(self) -> Suspend:
        """Return an awaitable that moves the awaiting coroutine onto this scheduler."""
        return Suspend(self._on_schedule)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run a coroutine on this scheduler, which takes ownership of it."""

        async def owned() -> Any:
            await self.schedule()
            return await coro

        handle = Handle(owned())
        with self._owned_guard:
            self._owned.add(handle)
        handle.add_done_callback(self._forget)
        handle.resume()

    def _forget(self, handle: Handle) -> None:
        with self._owned_guard:
            self._owned.discard(handle)
        try:
            handle.result()
        except Exception:
            _log.exception("spawned task raised")

    async def schedule_after(self, amount: float) -> None:
        """Resume the awaiting coroutine after ``amount`` seconds; zero or less is ``schedule()``."""
        await self.yield_for(amount)

    async def schedule_at(self, time: float) -> None:
        """Resume the awaiting coroutine at a ``time.monotonic()`` time point."""
        await self.yield_until(time)

    def yield_now(self) -> Suspend:
        """Put the awaiting coroutine at the back of the queue."""
        return Suspend(self._on_schedule)

    async def yield_for(self, amount: float) -> None:
        """Suspend for ``amount`` seconds; zero or less behaves like ``yield_now()``."""
        if amount <= 0:
            await self.schedule()
        else:
            await self._sleep_until(monotonic() + amount)

    async def yield_until(self, time: float) -> None:
        """Suspend until a ``time.monotonic()`` time point; a past one behaves like ``yield_now()``."""
        if time <= monotonic():
            await self.schedule()
        else:
            await self._sleep_until(time)

    async def _sleep_until(self, deadline: float) -> None:
        self._add_size(1)
        try:
            info = PollInfo()
            self._add_timer(deadline, info)
            await info
        finally:
            self._add_size(-1)

    async def poll(self, fd: FileDescriptor, op: PollOp = PollOp.READ, timeout: float = 0.0) -> PollStatus:
        """Wait until ``fd`` is ready for ``op``, or ``timeout`` seconds pass.

        A timeout of zero waits indefinitely.  Raises RuntimeError if the descriptor cannot
        be watched, for instance because it is already being polled.
        """
        fileno = _fileno(fd)
        self._add_size(1)
        try:
            info = PollInfo(fileno)
            try:
                with self._selector_guard:
                    self._selector.register(fileno, int(op), info)
            except (KeyError, ValueError, OSError) as exc:
                raise RuntimeError(f"cannot poll fd {fileno}: {exc}") from exc
            if timeout > 0:
                info.timer_token = self._add_timer(monotonic() + timeout, info)
                if info.processed:
                    self._timers.remove(info.timer_token)
            self._wake()
            return await info
        finally:
            self._add_size(-1)

    def resume(self, handle: Optional[Handle]) -> None:
        """Resume a suspended handle on this scheduler; None is ignored."""
        if handle is None:
            return
        if self._inline:
            self._add_size(1)
            self._queue_inline(handle)
        else:
            self._thread_pool.resume(handle)

    def size(self) -> int:
        """Tasks waiting on events or timers, queued, or running."""
        pool_size = self._thread_pool.size() if self._thread_pool is not None else 0
        return self._size + pool_size

    def empty(self) -> bool:
        return self.size() == 0

    def shutdown(self) -> None:
        """Stop the scheduler once all pending tasks have completed; blocks until then."""
        with self._state_guard:
            if self._shutdown_requested:
                return
            self._shutdown_requested = True
        self._wake(force=True)
        current = threading.current_thread()
        if self._io_thread is not None:
            if self._io_thread is current:
                return
            self._io_thread.join()
        if self._thread_pool is not None:
            self._thread_pool.shutdown()
        self._close()

    def __enter__(self) -> "IoScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # -- event loop ------------------------------------------------------------------

    def _close(self) -> None:
        with self._processing, self._selector_guard:
            if self._closed:
                return
            self._closed = True
            self._selector.close()
            self._wake_recv.close()
            self._wake_send.close()

    def _run_dedicated(self) -> None:
        if self._options.on_io_thread_start is not None:
            self._options.on_io_thread_start()
        with self._processing:
            while not self._shutdown_requested or self.size() > 0:
                self._execute(_DEFAULT_TIMEOUT)
        if self._options.on_io_thread_stop is not None:
            self._options.on_io_thread_stop()

    def _execute(self, timeout: Optional[float]) -> None:
        wait = timeout
        deadline = self._timers.next_deadline()
        if deadline is not None:
            until = max(0.0, deadline - monotonic())
            wait = until if wait is None else min(wait, until)

        ready = self._selector.select(wait)
        to_resume: list[Handle] = []
        for key, _mask in ready:
            if key.data is _WAKE:
                self._process_scheduled_inline()
            else:
                self._process_event(key.data, PollStatus.EVENT, to_resume)
        self._process_timeouts(to_resume)

        # Resume only after the whole batch is accounted for, so that an event and its
        # timeout arriving together are settled before either coroutine runs.
        if to_resume:
            if self._inline:
                for handle in to_resume:
                    self._resume_inline(handle)
            else:
                self._thread_pool.resume_all(to_resume)

    @staticmethod
    def _resume_inline(handle: Handle) -> None:
        try:
            handle.resume()
        except Exception:
            _log.exception("failed to resume a coroutine handle")

    def _process_scheduled_inline(self) -> None:
        with self._scheduled_guard:
            tasks, self._scheduled = self._scheduled, []
            try:
                while self._wake_recv.recv(4096):
                    pass
            except (BlockingIOError, InterruptedError):
                pass
            self._wake_pending = False
        for handle in tasks:
            self._resume_inline(handle)
        if tasks:
            self._add_size(-len(tasks))

    def _unregister(self, fd: int) -> None:
        with self._selector_guard:
            try:
                self._selector.unregister(fd)
            except (KeyError, ValueError):
                pass

    def _process_event(self, info: PollInfo, status: PollStatus, to_resume: list[Handle]) -> None:
        if info.processed:
            return
        if info.fd != -1:
            self._unregister(info.fd)
        if info.timer_token is not None:
            self._timers.remove(info.timer_token)
        handle = info.complete(status)
        if handle is not None:
            to_resume.append(handle)

    def _process_timeouts(self, to_resume: list[Handle]) -> None:
        for info in self._timers.pop_expired(monotonic()):
            if info.processed:
                continue
            if info.fd != -1:
                self._unregister(info.fd)
            handle = info.complete(PollStatus.TIMEOUT)
            if handle is not None:
                to_resume.append(handle)

    def _add_timer(self, deadline: float, info: PollInfo) -> TimerToken:
        token = self._timers.add(deadline, info)
        if self._timers.next_deadline() == deadline:
            self._wake()
        return token