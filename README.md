# coroflow

Tools for running plain Python `async def` coroutines on executors you control, without
an asyncio event loop. The package has thread pools, an I/O scheduler with timers and
file-descriptor polling, UDP peers, and synchronisation primitives that a coroutine can
`await`.

## Installation

```
pip install coroflow
```

To run the test suite, install the `test` extra:

```
pip install "coroflow[test]"
pytest
```

## How coroutines are driven

A coroutine is wrapped in a `coroflow.coroutine.Handle`. `handle.resume()` runs it until
it suspends or finishes. `start(coro)` creates a handle and resumes it once. The
coroutine then moves between threads whenever it awaits an executor's `schedule()`, an
event, a lock or a timer. `handle.wait(timeout)` blocks until the coroutine finishes.
`handle.result()` returns its value or re-raises its exception.
`handle.add_done_callback(cb)` runs `cb(handle)` once it finishes.

## Modules

- `coroflow.coroutine`: `Handle`, `start()` and `current_handle()`, which returns the handle being resumed on the current thread. `Suspend(on_suspend)` is the low-level awaitable. `on_suspend(handle)` returns False to carry on at once, or True/None to stay suspended. `Executor` is the abstract base for `schedule()`, `yield_now()` and `resume(handle)`.
- `coroflow.event`: `Event(initially_set=False)`. `is_set()`, `reset()` and `await event`. `set(policy)` resumes the waiters on the calling thread. `set_on(executor, policy)` hands them to an executor. The policy is `ResumeOrderPolicy.LIFO` (the default) or `ResumeOrderPolicy.FIFO`.
- `coroflow.mutex`: `Mutex` with `lock()`, `try_lock()` and `unlock()`. `await mutex.lock()` returns a `ScopedLock`, which releases the mutex once, either through `unlock()` or at the end of a `with` block. On unlock, ownership passes directly to a waiter.
- `coroflow.semaphore`: `Semaphore(least_max_value, starting_value=None)` with `acquire()`, `try_acquire()`, `release()`, `max()`, `value()` and `notify_waiters()`.
  - `await sem.acquire()` returns `AcquireResult.ACQUIRED` or `AcquireResult.SEMAPHORE_STOPPED`.
  - `notify_waiters()` stops the semaphore for good and wakes every waiter.
- `coroflow.thread_pool`: `ThreadPool(ThreadPoolOptions(thread_count=..., on_thread_start=..., on_thread_stop=...))` resumes handles on worker threads in FIFO order.
  - `schedule()`, `yield_now()`, `resume(handle)` and `resume_all(handles)` queue work.
  - `schedule_call(func, *args)` is a coroutine that runs `func` on a worker and returns its result.
  - `size()`, `empty()`, `queue_size()` and `queue_empty()` report on the queue.
  - `shutdown()` finishes the queued work and joins the workers. After that, `schedule()` raises `ThreadPoolShutdownError`.
  - The pool is a context manager that shuts down on exit.
- `coroflow.shared_mutex`: `SharedMutex(executor)` is a reader/writer lock with `lock()`, `lock_shared()`, `try_lock()`, `try_lock_shared()`, `unlock()` and `unlock_shared()`.
  - The awaitables return a `SharedScopedLock`.
  - While an exclusive locker waits, new shared lockers wait too.
  - Shared waiters woken together are resumed on the executor.
- `coroflow.poll`: `PollOp` (`READ`, `WRITE`, `READ_WRITE`), `PollStatus` (`EVENT`, `TIMEOUT`, `ERROR`, `CLOSED`) and `PollInfo`. `PollInfo` pairs an fd wait with its timeout, and only the first `complete(status)` counts.
- `coroflow.timer_queue`: `TimerQueue`, a thread-safe deadline queue. `add(deadline, item)` returns a `TimerToken`. The queue also has `remove(token)`, `pop_expired(now)`, `next_deadline()` and `len()`. Items with the same deadline come out in the order they were added.
- `coroflow.io_scheduler`: `IoScheduler(IoSchedulerOptions(...))`. The options are:
  - `thread_strategy`: `ThreadStrategy.SPAWN` runs a dedicated event thread; `ThreadStrategy.MANUAL` means you call `process_events(timeout)` yourself.
  - `execution_strategy`: `ExecutionStrategy.PROCESS_TASKS_ON_THREAD_POOL` or `ExecutionStrategy.PROCESS_TASKS_INLINE`.
  - `pool`: options for the owned thread pool.
  - `on_io_thread_start` and `on_io_thread_stop`: callbacks run on the event thread.

  The scheduler provides:
  - `schedule()`, `yield_now()`, `resume(handle)` and `spawn(coro)`. The scheduler keeps spawned coroutines and logs their exceptions.
  - The timer coroutines `yield_for(seconds)`, `yield_until(t)`, `schedule_after(seconds)` and `schedule_at(t)`, where `t` is a `time.monotonic()` value.
  - `poll(fd, op, timeout)`. A `timeout` of 0 waits indefinitely. `fd` is an int or any object with `fileno()`.
  - `size()`, `empty()` and `shutdown()`. `shutdown()` waits for pending tasks.
- `coroflow.udp_peer`: `UdpPeer(scheduler, bind_info=None, family=AF_INET)` with `poll()`, `sendto(peer_info, data)`, `recvfrom(size)` and `close()`.
  - `PeerInfo(address, port)` normalises the address.
  - `sendto` returns the bytes that were not sent.
  - `recvfrom` returns `(PeerInfo, bytes)`. It raises `UdpNotBoundError` on a peer created without `bind_info`.

## Examples

Run a coroutine on a thread pool:

```python
from coroflow.coroutine import start
from coroflow.thread_pool import ThreadPool, ThreadPoolOptions

with ThreadPool(ThreadPoolOptions(thread_count=1)) as pool:

    async def answer():
        await pool.schedule()
        return 42

    handle = start(answer())
    handle.wait(5)
    print(handle.result())  # 42
```

Sleep on the I/O scheduler, with tasks run inline on its event thread:

```python
from coroflow.coroutine import start
from coroflow.io_scheduler import ExecutionStrategy, IoScheduler, IoSchedulerOptions

options = IoSchedulerOptions(execution_strategy=ExecutionStrategy.PROCESS_TASKS_INLINE)
with IoScheduler(options) as scheduler:

    async def nap():
        await scheduler.schedule()
        await scheduler.yield_for(0.05)
        return "awake"

    handle = start(nap())
    handle.wait(5)
    print(handle.result())  # awake
```

Guard a critical section:

```python
from coroflow.mutex import Mutex

mutex = Mutex()

async def critical():
    with await mutex.lock():
        ...  # exclusive section
```

## What it does not do

coroflow has no TCP client or server, no TLS, and no DNS resolution. For networking it
offers only `UdpPeer` and the general `IoScheduler.poll()`. There are also no helpers
that gather many coroutines together or wait on them in one call. Use `Handle.wait()`
and `Handle.result()` on each handle instead.