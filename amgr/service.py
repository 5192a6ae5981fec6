from __future__ import annotations

from threading import Event, Lock, Thread
from typing import Any

import structlog

from .changes import ChangeQueue
from .coordinator import RestartCoordinator
from .db import EventLog
from .orchestrator import Orchestrator
from .poller import Poller
from .registry import KeyMode, Registry


class ArtifactsService:
    """Owns the registry and runs the poller and restart loops.

    Both loops share one stop event. ``stop`` may be called from any thread
    and more than once; only the first call does anything.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        mode: KeyMode = KeyMode.PATH,
        flush_on_stop: bool = True,
        events: EventLog | None = None,
        logger: Any = None,
    ):
        self.orchestrator = orchestrator
        self.registry = Registry(mode)
        self.flush_on_stop = flush_on_stop
        self.events = events
        self.log = logger or structlog.get_logger(__name__)

        self._stop = Event()
        self._stop_lock = Lock()
        self._stop_requested = False
        self._threads: list[Thread] = []
        self._queues: list[ChangeQueue] = []

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # Registry read API
    def get_workload_ids(self, key: str) -> tuple[str, ...]:
        return self.registry.get(key)

    def has_dependency(self, key: str) -> bool:
        return self.registry.has(key)

    def start_polling(self, interval_s: float) -> Poller:
        poller = Poller(self.orchestrator, self.registry, interval_s, events=self.events, logger=self.log)
        self._spawn("amgr-poller", poller.run, self._stop)
        return poller

    def start_restart_processing(self, queue: ChangeQueue, count: int, timeout_s: float) -> RestartCoordinator:
        coordinator = RestartCoordinator(
            self.registry,
            self.orchestrator,
            count=count,
            timeout_s=timeout_s,
            flush_on_stop=self.flush_on_stop,
            events=self.events,
            logger=self.log,
        )
        self._queues.append(queue)
        self._spawn("amgr-restarts", coordinator.run, queue, self._stop)
        return coordinator

    def _spawn(self, name: str, target: Any, *args: Any) -> None:
        if self._stop.is_set():
            raise RuntimeError("service has been stopped")
        thr = Thread(target=target, args=args, name=name, daemon=True)
        self._threads.append(thr)
        thr.start()

    def stop(self, block: bool = True, timeout_s: float | None = None) -> None:
        """Signal both loops to stop.

        With ``block`` the call returns once the loop threads have observed
        the signal and exited (or ``timeout_s`` passed). Without it the
        signal is fired from a helper thread and the call returns at once.
        """
        with self._stop_lock:
            if self._stop_requested:
                self.log.warning("stop already requested")
                return
            self._stop_requested = True

        if block:
            self._signal_stop()
            for thr in self._threads:
                thr.join(timeout_s)
            self.log.info("service stopped")
        else:
            Thread(target=self._signal_stop, name="amgr-stop", daemon=True).start()

    def _signal_stop(self) -> None:
        self._stop.set()
        for q in self._queues:
            q.interrupt()
