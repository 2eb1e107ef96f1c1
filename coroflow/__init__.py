"""Coroutine handles, thread pools, an I/O scheduler, UDP peers and awaitable locks, events and semaphores."""

__version__ = "0.1.0"
__all__ = [
    "coroutine",
    "event",
    "mutex",
    "semaphore",
    "thread_pool",
    "shared_mutex",
    "poll",
    "timer_queue",
    "io_scheduler",
    "udp_peer",
]