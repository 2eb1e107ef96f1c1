"""Driving native coroutines by hand: handles, suspension points and executors."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

_local = threading.local()


def _handle_stack() -> list:
    stack = getattr(_local, "stack", None)
    if stack is None:
        stack = _local.stack = []
    return stack


def current_handle() -> Optional["Handle"]:
    """Return the handle being resumed on this thread, or None outside a coroutine."""
    stack = _handle_stack()
    return stack[-1] if stack else None


class Suspend:
    """A suspension point.

    When a coroutine awaits it, ``on_suspend(handle)`` is called with the handle of the
    suspended coroutine.  Returning False resumes the coroutine at once; returning True
    (or None) leaves it suspended until someone calls ``handle.resume()``.
    """

    __slots__ = ("_on_suspend",)

    def __init__(self, on_suspend: Callable[["Handle"], Optional[bool]]):
        self._on_suspend = on_suspend

    def _suspend(self, handle: "Handle") -> bool:
        outcome = self._on_suspend(handle)
        return True if outcome is None else bool(outcome)

    def __await__(self):
        yield self


class Handle(Generic[T]):
    """Owns a coroutine object and resumes it one step at a time."""

    def __init__(self, coro: Coroutine[Any, Any, T]):
        self._coro = coro
        self._finished = threading.Event()
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._exception: Optional[BaseException] = None
        self._callbacks: list[Callable[["Handle[T]"], None]] = []

    def resume(self) -> None:
        """Run the coroutine until it suspends or finishes."""
        if self._finished.is_set():
            raise RuntimeError("cannot resume a finished coroutine")
        stack = _handle_stack()
        stack.append(self)
        try:
            to_throw: Optional[BaseException] = None
            while True:
                try:
                    if to_throw is None:
                        yielded = self._coro.send(None)
                    else:
                        exc, to_throw = to_throw, None
                        yielded = self._coro.throw(exc)
                except StopIteration as stop:
                    self._finish(stop.value, None)
                    return
                except Exception as exc:
                    self._finish(None, exc)
                    return

                if not isinstance(yielded, Suspend):
                    to_throw = TypeError(f"coroutine yielded an unsupported object: {yielded!r}")
                    continue
                try:
                    if yielded._suspend(self):
                        return
                except Exception as exc:
                    to_throw = exc
        finally:
            stack.pop()

    def _finish(self, value: Optional[T], exception: Optional[BaseException]) -> None:
        with self._lock:
            self._value = value
            self._exception = exception
            callbacks, self._callbacks = self._callbacks, []
            self._finished.set()
        for callback in callbacks:
            callback(self)

    def done(self) -> bool:
        """True once the coroutine has returned or raised."""
        return self._finished.is_set()

    def result(self) -> T:
        """Return the coroutine's value, re-raising any exception it ended with."""
        if not self._finished.is_set():
            raise RuntimeError("coroutine has not finished")
        if self._exception is not None:
            raise self._exception
        return self._value  # type: ignore[return-value]

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the coroutine finishes; return whether it did within the timeout."""
        return self._finished.wait(timeout)

    def add_done_callback(self, callback: Callable[["Handle[T]"], None]) -> None:
        """Call ``callback(handle)`` when the coroutine finishes, or now if it already has."""
        with self._lock:
            if not self._finished.is_set():
                self._callbacks.append(callback)
                return
        callback(self)


class Executor(ABC):
    """Something that can run coroutine handles."""

    @abstractmethod
    def schedule(self) -> Awaitable[None]:
        """Return an awaitable that moves the awaiting coroutine onto this executor."""

    @abstractmethod
    def yield_now(self) -> Awaitable[None]:
        """Return an awaitable that puts the awaiting coroutine at the back of the queue."""

    @abstractmethod
    def resume(self, handle: Handle) -> None:
        """Resume the given handle on this executor."""


def start(coro: Coroutine[Any, Any, T]) -> Handle[T]:
    """Wrap a coroutine in a handle and run it up to its first suspension."""
    handle = Handle(coro)
    handle.resume()
    return handle