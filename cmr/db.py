from __future__ import annotations

import os
import sqlite3
from typing import Any, Iterable

from .runtime import CycleReport, utc_now
from .settings import settings

_db_path: str | None = None


def configure(path: str) -> None:
    """Point the event log at ``path`` instead of ``settings.db_path``."""
    global _db_path
    _db_path = path


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    A directory path gets a ``cmr.db`` file inside it; missing parent
    directories are created.
    """
    p = os.path.abspath(_db_path or settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "cmr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              node TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cycles (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              service_name TEXT,
              ok INTEGER NOT NULL,
              added TEXT NOT NULL,
              removed TEXT NOT NULL,
              failed_adds TEXT NOT NULL,
              failed_removes TEXT NOT NULL,
              members TEXT NOT NULL,
              error TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_cycles_ts ON cycles(ts);
            """
        )


def log_event(level: str, message: str, service_name: str | None = None, node: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, node, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), service_name, node, message),
        )


def _join(nodes: Iterable[str]) -> str:
    return ",".join(sorted(nodes))


def record_cycle(report: CycleReport, service_name: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO cycles (ts, service_name, ok, added, removed, failed_adds, failed_removes, members, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report.finished_at or utc_now(),
                service_name,
                1 if report.ok else 0,
                _join(report.added),
                _join(report.removed),
                _join(report.failed_adds),
                _join(report.failed_removes),
                _join(report.members),
                report.error,
            ),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_cycles(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM cycles ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
