import pytest

from coroflow.coroutine import start
from coroflow.semaphore import AcquireResult, Semaphore


def _acquiring(sem):
    async def body():
        return await sem.acquire()

    return start(body())


def test_try_acquire_until_exhausted():
    sem = Semaphore(2)
    assert (sem.max(), sem.value()) == (2, 2)
    assert [sem.try_acquire() for _ in range(3)] == [True, True, False]
    assert sem.value() == 0


def test_acquire_available_does_not_suspend():
    sem = Semaphore(1)
    assert _acquiring(sem).result() is AcquireResult.ACQUIRED
    assert sem.value() == 0


def test_acquire_waits_for_release():
    sem = Semaphore(1, 0)
    pending = _acquiring(sem)
    assert not pending.done()
    sem.release()
    assert pending.result() is AcquireResult.ACQUIRED
    assert sem.value() == 0


def test_waiters_resumed_in_arrival_order():
    sem = Semaphore(1, 0)
    order = []

    async def worker(name):
        result = await sem.acquire()
        order.append(name)
        return result

    first, second = start(worker("first")), start(worker("second"))
    sem.release()
    assert order == ["first"]
    assert not second.done()
    sem.release()
    assert order == ["first", "second"]
    assert first.result() is second.result() is AcquireResult.ACQUIRED


def test_release_does_not_exceed_max():
    sem = Semaphore(2)
    sem.release()
    assert sem.value() == sem.max()


def test_notify_waiters_stops_semaphore():
    sem = Semaphore(1, 0)
    waiting = _acquiring(sem)
    sem.notify_waiters()
    assert waiting.result() is AcquireResult.SEMAPHORE_STOPPED
    assert not sem.try_acquire()
    sem.release()
    assert not sem.try_acquire()
    assert _acquiring(sem).result() is AcquireResult.SEMAPHORE_STOPPED


@pytest.mark.parametrize("stopped, text", [(False, "acquired"), (True, "semaphore_stopped")])
def test_acquire_result_strings(stopped, text):
    sem = Semaphore(1, 0 if stopped else 1)
    if stopped:
        sem.notify_waiters()
    assert str(_acquiring(sem).result()) == text


@pytest.mark.parametrize("args", [(1, 2), (-1,)])
def test_invalid_construction(args):
    with pytest.raises(ValueError):
        Semaphore(*args)