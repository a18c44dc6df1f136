from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (docker creates one for a missing
    bind-mounted file), the journal file goes inside it.
    """
    p = os.path.abspath(settings.journal_path)
    if os.path.isdir(p):
        p = os.path.join(p, "nearnet.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path())
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS services (
              service_id TEXT PRIMARY KEY,
              hostname TEXT NOT NULL,
              port INTEGER NOT NULL,
              host_ip TEXT,
              host_port INTEGER,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, service_id: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_id, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level.upper(), service_id, message),
        )


@dataclass(frozen=True)
class ServiceRow:
    service_id: str
    hostname: str
    port: int
    host_ip: str | None
    host_port: int | None
    created_at: str


def record_service(service_id: str, hostname: str, port: int, binding: Any = None) -> ServiceRow:
    """Upsert a provisioned service; ``binding`` is a PortBinding or None."""
    host_ip = binding.interface_ip if binding is not None else None
    host_port = binding.interface_port if binding is not None else None
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO services (service_id, hostname, port, host_ip, host_port, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(service_id) DO UPDATE SET
              hostname=excluded.hostname,
              port=excluded.port,
              host_ip=excluded.host_ip,
              host_port=excluded.host_port,
              created_at=excluded.created_at
            """,
            (service_id, hostname, port, host_ip, host_port, utc_now()),
        )
        row = conn.execute("SELECT * FROM services WHERE service_id=?", (service_id,)).fetchone()
        return ServiceRow(**dict(row))


def list_services() -> list[ServiceRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM services ORDER BY created_at, service_id").fetchall()
        return [ServiceRow(**dict(r)) for r in rows]


def clear_services() -> None:
    with connect() as conn:
        conn.execute("DELETE FROM services")


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
