from __future__ import annotations

import posixpath
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Iterable, Mapping
from urllib.parse import urlsplit


class KeyMode(str, Enum):
    """Which key space a registry is built for."""

    PATH = "path"  # full volume host path
    NAME = "name"  # basename of a fetched artifact URI


def path_key(host_path: str) -> str:
    p = (host_path or "").strip()
    if not p:
        return ""
    stripped = p.rstrip("/")
    return stripped or "/"


def name_key(uri: str) -> str:
    u = (uri or "").strip()
    if not u:
        return ""
    return posixpath.basename(urlsplit(u).path.rstrip("/"))


def normalize(value: str, mode: KeyMode) -> str:
    if mode is KeyMode.PATH:
        return path_key(value)
    return name_key(value)


class Dependencies:
    """One snapshot of dependency key -> workload ids.

    Built with ``add`` and then published through ``Registry.replace``.
    Once published it is never mutated; readers get tuples.
    """

    def __init__(self) -> None:
        self._by_key: dict[str, list[str]] = {}
        self._frozen = False

    def add(self, workload_id: str, key: str) -> None:
        if not key:
            return
        if self._frozen:
            raise RuntimeError("dependencies snapshot is frozen")
        ids = self._by_key.setdefault(key, [])
        if workload_id not in ids:
            ids.append(workload_id)

    def freeze(self) -> "Dependencies":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, key: str) -> tuple[str, ...]:
        return tuple(self._by_key.get(key, ()))

    def has(self, key: str) -> bool:
        return key in self._by_key

    def keys(self) -> list[str]:
        return list(self._by_key)

    def as_dict(self) -> Mapping[str, tuple[str, ...]]:
        return MappingProxyType({k: tuple(v) for k, v in self._by_key.items()})

    def __len__(self) -> int:
        return len(self._by_key)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "Dependencies":
        deps = cls()
        for workload_id, key in pairs:
            deps.add(workload_id, key)
        return deps.freeze()


class Registry:
    """Thread-safe holder of the current ``Dependencies`` snapshot."""

    def __init__(self, mode: KeyMode = KeyMode.PATH) -> None:
        self.mode = mode
        self._lock = Lock()
        self._current = Dependencies().freeze()

    def replace(self, snapshot: Dependencies) -> None:
        snapshot.freeze()
        with self._lock:
            self._current = snapshot

    def snapshot(self) -> Dependencies:
        with self._lock:
            return self._current

    def get(self, key: str) -> tuple[str, ...]:
        with self._lock:
            current = self._current
        return current.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            current = self._current
        return current.has(key)

    def __len__(self) -> int:
        return len(self.snapshot())
