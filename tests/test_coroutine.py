import threading

import pytest

from coroflow.coroutine import Executor, Handle, Suspend, current_handle, start


def _parking(result):
    """Return a coroutine that parks its handle in the returned list before finishing."""
    parked = []

    async def body():
        await Suspend(parked.append)
        return result

    return body(), parked


async def _inner():
    return 5


async def _outer():
    return 1 + await _inner()


async def _constant():
    return 42


@pytest.mark.parametrize("factory, expected", [(_constant, 42), (_outer, 6)], ids=["plain", "nested"])
def test_runs_to_completion(factory, expected):
    handle = start(factory())
    assert handle.done()
    assert handle.result() == expected


def test_result_before_done_raises():
    coro, parked = _parking("ok")
    handle = start(coro)
    assert not handle.done()
    with pytest.raises(RuntimeError):
        handle.result()
    assert parked == [handle]
    handle.resume()
    assert handle.result() == "ok"


def test_suspend_returning_false_continues_immediately():
    calls = []

    async def body():
        await Suspend(lambda h: calls.append(h) or False)
        return "done"

    handle = start(body())
    assert handle.done()
    assert handle.result() == "done"
    assert calls == [handle]


class _BadAwaitable:
    def __await__(self):
        yield "nope"


async def _raises_value_error():
    raise ValueError("boom")


async def _awaits_bad():
    await _BadAwaitable()


@pytest.mark.parametrize(
    "factory, error",
    [(_raises_value_error, ValueError), (_awaits_bad, TypeError)],
    ids=["raised", "bad-yield"],
)
def test_exception_is_stored_and_reraised(factory, error):
    outcome = start(factory())
    assert outcome.done()
    with pytest.raises(error):
        outcome.result()


def test_exception_from_on_suspend_is_thrown_into_coroutine():
    def explode(handle):
        raise KeyError("x")

    async def body():
        try:
            await Suspend(explode)
        except KeyError:
            return "caught"
        return "missed"

    assert start(body()).result() == "caught"


def test_current_handle_inside_and_outside():
    seen = []

    async def body():
        seen.append(current_handle())

    assert seen == [start(body())]
    assert current_handle() is None


def test_resume_finished_raises():
    finished = start(_constant())
    with pytest.raises(RuntimeError):
        finished.resume()


def test_done_callback_before_and_after():
    coro, _ = _parking(7)
    fired = []
    handle = start(coro)
    handle.add_done_callback(fired.append)
    assert fired == []
    handle.resume()
    assert fired == [handle]
    handle.add_done_callback(fired.append)
    assert fired == [handle, handle]


def test_wait_with_timeout_and_cross_thread_resume():
    coro, parked = _parking(3)
    handle = Handle(coro)
    handle.resume()
    assert handle.wait(0.01) is False
    worker = threading.Thread(target=parked[0].resume)
    worker.start()
    assert handle.wait(5) is True
    worker.join()
    assert handle.result() == 3


def test_executor_is_abstract():
    with pytest.raises(TypeError):
        Executor()