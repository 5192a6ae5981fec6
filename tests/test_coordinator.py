import threading
import time

from amgr.changes import ChangeQueue
from amgr.coordinator import RestartCoordinator
from amgr.db import EventLog
from amgr.registry import Dependencies, Registry

from fakes import FakeOrchestrator


def _registry(pairs):
    reg = Registry()
    reg.replace(Dependencies.from_pairs(pairs))
    return reg


def _run(coordinator, queue):
    stop = threading.Event()
    t = threading.Thread(target=coordinator.run, args=(queue, stop), daemon=True)
    t.start()
    return stop, t


def _stop(stop, queue, t):
    stop.set()
    queue.interrupt()
    t.join(timeout=2)
    assert not t.is_alive()


def _wait_for(pred, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.01)
    return pred()


def test_flush_restarts_dependents_in_enqueue_order_without_dedup():
    orch = FakeOrchestrator()
    reg = _registry([("/app-A", "/data/model"), ("/app-B", "/data/other"), ("/app-C", "/data/model")])
    coord = RestartCoordinator(reg, orch, count=10, timeout_s=10)

    outcomes = coord.flush(["/data/model", "/data/other", "/data/model"])

    assert orch.restarts == ["/app-A", "/app-C", "/app-B", "/app-A", "/app-C"]
    assert all(o.ok for o in outcomes)
    assert [o.key for o in outcomes][:2] == ["/data/model", "/data/model"]


def test_key_enqueued_twice_restarts_dependent_twice():
    orch = FakeOrchestrator()
    coord = RestartCoordinator(_registry([("app-A", "/data/model")]), orch, count=2, timeout_s=10)
    coord.flush(["/data/model", "/data/model"])
    assert orch.restarts == ["app-A", "app-A"]


def test_restart_failure_does_not_abort_batch(tmp_path):
    orch = FakeOrchestrator()
    orch.fail_restart_for = {"/bad"}
    events = EventLog(str(tmp_path / "ev.db"))
    reg = _registry([("/bad", "/k1"), ("/good", "/k1"), ("/other", "/k2")])
    coord = RestartCoordinator(reg, orch, events=events)

    outcomes = coord.flush(["/k1", "/k2"])

    assert orch.restarts == ["/bad", "/good", "/other"]
    assert [o.ok for o in outcomes] == [False, True, True]
    assert "cannot restart /bad" in outcomes[0].error
    rows = events.latest(kind="restart")
    assert {r["level"] for r in rows} == {"INFO", "ERROR"}
    assert len(rows) == 3


def test_empty_flush_and_unknown_keys_are_noops():
    orch = FakeOrchestrator()
    coord = RestartCoordinator(Registry(), orch)
    assert coord.flush([]) == []
    assert coord.flush(["/unknown"]) == []
    assert orch.restarts == []


def test_flush_resolves_dependents_at_flush_time():
    orch = FakeOrchestrator()
    reg = _registry([("/old", "/data/model")])
    coord = RestartCoordinator(reg, orch, count=10, timeout_s=10)
    batch = ["/data/model"]
    reg.replace(Dependencies.from_pairs([("/new", "/data/model")]))
    coord.flush(batch)
    assert orch.restarts == ["/new"]


def test_flushes_when_count_reached():
    orch = FakeOrchestrator()
    q = ChangeQueue(10)
    coord = RestartCoordinator(_registry([("/a", "/k")]), orch, count=3, timeout_s=30)
    stop, t = _run(coord, q)
    try:
        q.try_enqueue("/k")
        q.try_enqueue("/k")
        time.sleep(0.1)
        assert orch.restarts == []
        q.try_enqueue("/k")
        assert _wait_for(lambda: len(orch.restarts) == 3)
    finally:
        _stop(stop, q, t)


def test_flushes_partial_batch_after_timeout():
    orch = FakeOrchestrator()
    q = ChangeQueue(10)
    coord = RestartCoordinator(_registry([("/a", "/k")]), orch, count=100, timeout_s=0.2)
    stop, t = _run(coord, q)
    try:
        q.try_enqueue("/k")
        assert _wait_for(lambda: orch.restarts == ["/a"], timeout=2)
    finally:
        _stop(stop, q, t)


def test_idle_period_restarts_nothing():
    orch = FakeOrchestrator()
    q = ChangeQueue(10)
    coord = RestartCoordinator(_registry([("/a", "/k")]), orch, count=1, timeout_s=0.05)
    stop, t = _run(coord, q)
    time.sleep(0.3)
    _stop(stop, q, t)
    assert orch.restarts == []


def test_stop_flushes_partial_batch_by_default():
    orch = FakeOrchestrator()
    q = ChangeQueue(10)
    coord = RestartCoordinator(_registry([("/a", "/k")]), orch, count=100, timeout_s=30)
    stop, t = _run(coord, q)
    q.try_enqueue("/k")
    assert _wait_for(lambda: len(q) == 0)
    _stop(stop, q, t)
    assert orch.restarts == ["/a"]


def test_stop_can_drop_partial_batch():
    orch = FakeOrchestrator()
    q = ChangeQueue(10)
    coord = RestartCoordinator(_registry([("/a", "/k")]), orch, count=100, timeout_s=30, flush_on_stop=False)
    stop, t = _run(coord, q)
    q.try_enqueue("/k")
    assert _wait_for(lambda: len(q) == 0)
    _stop(stop, q, t)
    assert orch.restarts == []
