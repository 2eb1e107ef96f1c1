import pytest

from coroflow.coroutine import start
from coroflow.event import Event
from coroflow.mutex import Mutex


def test_mutex_single_waiter_not_locked():
    output = []
    m = Mutex()

    async def emplace():
        with await m.lock():
            assert not m.try_lock()
            output.append(1)
        assert m.try_lock()
        assert not m.try_lock()
        m.unlock()

    start(emplace()).result()
    assert m.try_lock()
    m.unlock()
    assert output == [1]


def test_mutex_many_waiters_until_event():
    counter = {"value": 0}
    m = Mutex()
    e = Event()

    async def worker():
        with await m.lock():
            assert not m.try_lock()
            counter["value"] += 1

    async def blocker():
        with await m.lock():
            assert not m.try_lock()
            await e

    async def setter():
        e.set()

    launched = [start(blocker())] + [start(worker()) for _ in range(4)]
    assert counter["value"] == 0
    launched.append(start(setter()))

    assert all(h.done() for h in launched)
    for h in launched:
        h.result()
    assert counter["value"] == 4
    assert m.try_lock()


def test_mutex_scoped_lock_unlock_prior_to_scope_exit():
    m = Mutex()

    async def body():
        with await m.lock() as lk:
            assert not m.try_lock()
            lk.unlock()
            assert m.try_lock()
        return "ok"

    assert start(body()).result() == "ok"


def test_waiters_served_most_recent_first():
    m = Mutex()
    order = []
    assert m.try_lock()

    async def waiter(name):
        with await m.lock():
            order.append(name)

    for name in "abc":
        start(waiter(name))
    assert order == []
    m.unlock()
    assert order == ["c", "b", "a"]
    assert m.try_lock()


def test_unlock_unlocked_raises():
    with pytest.raises(RuntimeError):
        Mutex().unlock()