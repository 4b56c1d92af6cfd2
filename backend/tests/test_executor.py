import threading

import pytest

from noos.services import Accepted, BoundedExecutor, Rejected

from conftest import wait_until


@pytest.fixture
def executor():
    ex = BoundedExecutor("unit", workers=1, queue_capacity=1)
    yield ex
    ex.shutdown(wait=True)


def test_accepted_work_runs(executor):
    result = executor.submit(lambda x, y: x + y, 2, y=40)

    assert isinstance(result, Accepted)
    assert result.accepted
    assert result.future.result(timeout=5) == 42


def test_full_pool_rejects_immediately(executor):
    gate, started = threading.Event(), threading.Event()

    def blocker():
        started.set()
        gate.wait(timeout=10)
        return "done"

    first = executor.submit(blocker)
    assert started.wait(timeout=5)
    second = executor.submit(blocker)
    third = executor.submit(blocker)

    assert isinstance(first, Accepted)
    assert isinstance(second, Accepted)
    assert isinstance(third, Rejected)
    assert not third.accepted
    assert third.active == 1
    assert third.queued == 1
    assert third.capacity == 2

    stats = executor.stats()
    assert (stats.active, stats.queued) == (1, 1)

    gate.set()
    assert first.future.result(timeout=5) == "done"
    assert second.future.result(timeout=5) == "done"


def test_slots_are_released_after_completion(executor):
    gate = threading.Event()
    futures = [executor.submit(gate.wait, 10).future for _ in range(2)]
    gate.set()
    for future in futures:
        future.result(timeout=5)

    attempts = []

    def resubmit():
        attempts.append(executor.submit(lambda: "again"))
        return isinstance(attempts[-1], Accepted)

    assert wait_until(resubmit, timeout=5)
    assert attempts[-1].future.result(timeout=5) == "again"


def test_failures_surface_through_the_future(executor):
    def boom():
        raise RuntimeError("bad run")

    result = executor.submit(boom)

    with pytest.raises(RuntimeError, match="bad run"):
        result.future.result(timeout=5)
    assert wait_until(lambda: executor.stats().active == 0)


def test_shut_down_executor_rejects():
    ex = BoundedExecutor("closed", workers=1, queue_capacity=0)
    ex.shutdown(wait=True)

    result = ex.submit(lambda: None)

    assert isinstance(result, Rejected)
    assert "shut down" in result.reason


def test_invalid_sizes():
    with pytest.raises(ValueError):
        BoundedExecutor("bad", workers=0, queue_capacity=1)
    with pytest.raises(ValueError):
        BoundedExecutor("bad", workers=1, queue_capacity=-1)
