from __future__ import annotations

from threading import Event
from typing import Any, Iterable

import structlog

from .db import EventLog
from .orchestrator import Orchestrator, Workload
from .registry import Dependencies, KeyMode, Registry, normalize


def build_dependencies(workloads: Iterable[Workload], mode: KeyMode) -> Dependencies:
    """Map every dependency of every workload to its key in ``mode``.

    Path mode reads volume host paths, name mode reads artifact URIs.
    """
    deps = Dependencies()
    for w in workloads:
        values = w.host_paths if mode is KeyMode.PATH else w.artifact_uris
        for value in values:
            deps.add(w.id, normalize(value, mode))
    return deps.freeze()


class Poller:
    """Periodically rebuilds the registry from the orchestrator."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        registry: Registry,
        interval_s: float = 10.0,
        events: EventLog | None = None,
        logger: Any = None,
    ):
        self.orchestrator = orchestrator
        self.registry = registry
        self.interval_s = max(0.01, float(interval_s))
        self.events = events
        self.log = logger or structlog.get_logger(__name__)

    def poll_once(self) -> int:
        """Fetch workloads and publish a fresh snapshot.

        On failure the current snapshot is kept and the error is re-raised.
        Returns the number of dependency keys published.
        """
        try:
            workloads = self.orchestrator.list_workloads()
        except Exception as e:
            if self.events:
                self.events.record("ERROR", "poll", f"Failed to list workloads: {type(e).__name__}: {e}")
            raise

        snapshot = build_dependencies(workloads, self.registry.mode)
        self.registry.replace(snapshot)
        self.log.debug("registry refreshed", workloads=len(workloads), keys=len(snapshot))
        return len(snapshot)

    def run(self, stop: Event) -> None:
        self.log.info("poller started", interval_s=self.interval_s, mode=self.registry.mode.value)
        while True:
            try:
                self.poll_once()
            except Exception as e:
                self.log.error("workload listing failed, keeping current registry", error=f"{type(e).__name__}: {e}")
            if stop.wait(self.interval_s):
                break
        self.log.info("poller stopped")
