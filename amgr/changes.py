from __future__ import annotations

from collections import deque
from threading import Condition, Event


class QueueFull(Exception):
    """The change queue is at capacity; the caller should reject the request."""


class ChangeQueue:
    """Bounded FIFO of dependency keys between uploads and the restart loop.

    Producers never block: ``try_enqueue`` raises ``QueueFull`` instead.
    The consumer waits with ``get`` on an item, a timeout or a cancel event,
    whichever comes first. ``interrupt`` wakes a waiting consumer so it can
    re-check its cancel event.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: deque[str] = deque()
        self._cond = Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def full(self) -> bool:
        with self._cond:
            return len(self._items) >= self.capacity

    def ensure_capacity(self) -> None:
        """Raise ``QueueFull`` if a new key would not fit right now."""
        if self.full():
            raise QueueFull(f"change queue is at capacity ({self.capacity})")

    def try_enqueue(self, key: str) -> None:
        with self._cond:
            if len(self._items) >= self.capacity:
                raise QueueFull(f"change queue is at capacity ({self.capacity})")
            self._items.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None, cancel: Event | None = None) -> str | None:
        """Pop the oldest key.

        Returns None when ``timeout`` elapses or ``cancel`` is set before an
        item arrives.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: bool(self._items) or (cancel is not None and cancel.is_set()),
                timeout=timeout,
            )
            if self._items and not (cancel is not None and cancel.is_set()):
                return self._items.popleft()
            return None

    def interrupt(self) -> None:
        with self._cond:
            self._cond.notify_all()
