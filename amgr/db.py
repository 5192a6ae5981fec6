from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Iterator


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(db_path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a missing bind-mounted file shows
    up as a directory under Docker) the DB file is placed inside it.
    """
    if db_path == ":memory:":
        return db_path

    p = os.path.abspath(db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "amgr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


class EventLog:
    """Append-only sqlite audit trail of polls, uploads and restarts."""

    def __init__(self, db_path: str) -> None:
        self.path = _resolve_db_path(db_path)
        self._lock = Lock()
        self._memory_conn: sqlite3.Connection | None = None
        if self.path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._memory_conn.row_factory = sqlite3.Row
        self.init_db()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction; file connections are closed after."""
        conn = self._memory_conn
        if conn is None:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            if conn is not self._memory_conn:
                conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  kind TEXT NOT NULL, -- poll|upload|restart
                  key TEXT,
                  workload_id TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )

    def record(
        self,
        level: str,
        kind: str,
        message: str,
        key: str | None = None,
        workload_id: str | None = None,
    ) -> None:
        with self._lock, self.connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, kind, key, workload_id, message) VALUES (?, ?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), kind, key, workload_id, message),
            )

    def latest(self, limit: int = 100, kind: str | None = None) -> list[dict[str, Any]]:
        with self._lock, self.connect() as conn:
            if kind:
                rows = conn.execute(
                    "SELECT * FROM events WHERE kind=? ORDER BY id DESC LIMIT ?", (kind, limit)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]
