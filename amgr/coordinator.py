from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Event
from typing import Any, Sequence

import structlog

from .changes import ChangeQueue
from .db import EventLog
from .orchestrator import Orchestrator, RestartResult
from .registry import Registry


@dataclass(frozen=True)
class RestartOutcome:
    key: str
    workload_id: str
    result: RestartResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RestartCoordinator:
    """Turns a stream of changed keys into batched workload restarts.

    A batch is flushed as soon as it holds ``count`` keys, or when
    ``timeout_s`` has passed since the previous flush. Dependents are looked
    up at flush time so a registry refresh between enqueue and flush is seen.
    """

    def __init__(
        self,
        registry: Registry,
        orchestrator: Orchestrator,
        count: int = 5,
        timeout_s: float = 5.0,
        flush_on_stop: bool = True,
        events: EventLog | None = None,
        logger: Any = None,
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.count = max(1, int(count))
        self.timeout_s = max(0.01, float(timeout_s))
        self.flush_on_stop = flush_on_stop
        self.events = events
        self.log = logger or structlog.get_logger(__name__)

    def run(self, queue: ChangeQueue, stop: Event) -> None:
        self.log.info("restart processing started", count=self.count, timeout_s=self.timeout_s)
        batch: list[str] = []
        deadline = time.monotonic() + self.timeout_s

        while not stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                if batch:
                    self.log.debug("batch timeout reached", size=len(batch))
                self.flush(batch)
                batch = []
                deadline = time.monotonic() + self.timeout_s
                continue

            key = queue.get(timeout=remaining, cancel=stop)
            if key is None:
                continue

            batch.append(key)
            if len(batch) >= self.count:
                self.flush(batch)
                batch = []
                deadline = time.monotonic() + self.timeout_s

        if batch and self.flush_on_stop:
            self.log.info("flushing partial batch on stop", size=len(batch))
            self.flush(batch)
        elif batch:
            self.log.warning("dropping partial batch on stop", size=len(batch), keys=batch)
        self.log.info("restart processing stopped")

    def flush(self, batch: Sequence[str]) -> list[RestartOutcome]:
        """Restart every dependent of every key, in enqueue order.

        Keys are not deduplicated. A failed restart is logged and recorded,
        the rest of the batch still runs.
        """
        outcomes: list[RestartOutcome] = []
        if not batch:
            return outcomes

        self.log.info("processing changed keys", size=len(batch))
        for key in batch:
            workload_ids = self.registry.get(key)
            self.log.debug("resolved dependents", key=key, workloads=len(workload_ids))
            for workload_id in workload_ids:
                outcomes.append(self._restart(key, workload_id))
        return outcomes

    def _restart(self, key: str, workload_id: str) -> RestartOutcome:
        try:
            result = self.orchestrator.restart(workload_id)
        except Exception as e:
            err = f"{type(e).__name__}: {e}"
            self.log.error("restart failed", workload_id=workload_id, key=key, error=err)
            if self.events:
                self.events.record("ERROR", "restart", f"Restart failed: {err}", key=key, workload_id=workload_id)
            return RestartOutcome(key=key, workload_id=workload_id, error=err)

        self.log.info(
            "restarted workload",
            workload_id=workload_id,
            key=key,
            deployment_id=result.deployment_id,
            version=result.version,
        )
        if self.events:
            self.events.record(
                "INFO",
                "restart",
                f"Restarted deployment={result.deployment_id} version={result.version}",
                key=key,
                workload_id=workload_id,
            )
        return RestartOutcome(key=key, workload_id=workload_id, result=result)
