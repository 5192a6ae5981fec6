import threading
import time

import pytest

from amgr.changes import ChangeQueue, QueueFull


def test_try_enqueue_fails_fast_at_capacity():
    q = ChangeQueue(capacity=2)
    q.try_enqueue("/a")
    q.try_enqueue("/b")
    assert q.full()
    with pytest.raises(QueueFull):
        q.try_enqueue("/c")
    assert len(q) == 2


def test_ensure_capacity_checks_occupancy_without_enqueueing():
    q = ChangeQueue(capacity=1)
    q.ensure_capacity()
    assert len(q) == 0
    q.try_enqueue("/a")
    with pytest.raises(QueueFull):
        q.ensure_capacity()


def test_get_is_fifo():
    q = ChangeQueue()
    for k in ["/a", "/b", "/a"]:
        q.try_enqueue(k)
    assert [q.get(timeout=0.1) for _ in range(3)] == ["/a", "/b", "/a"]


def test_get_times_out_with_none():
    q = ChangeQueue()
    t0 = time.monotonic()
    assert q.get(timeout=0.05) is None
    assert time.monotonic() - t0 >= 0.04


def test_get_returns_none_when_cancelled():
    q = ChangeQueue()
    cancel = threading.Event()
    result = []

    def consumer():
        result.append(q.get(timeout=5, cancel=cancel))

    t = threading.Thread(target=consumer)
    t.start()
    time.sleep(0.05)
    cancel.set()
    q.interrupt()
    t.join(timeout=1)
    assert not t.is_alive()
    assert result == [None]


def test_get_wakes_on_enqueue():
    q = ChangeQueue()
    result = []
    t = threading.Thread(target=lambda: result.append(q.get(timeout=5)))
    t.start()
    q.try_enqueue("/data/x")
    t.join(timeout=1)
    assert result == ["/data/x"]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ChangeQueue(capacity=0)
