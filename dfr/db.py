from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from .settings import settings

logger = logging.getLogger("dfr.events")

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory, the DB file is placed
    inside it as dfr.db. Missing parent directories are created.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "dfr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Open the journal, commit on success (rollback on error) and always close."""
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service TEXT,
              hostname TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS switches (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              service TEXT NOT NULL,
              hostname TEXT NOT NULL,
              from_ip TEXT,
              to_ip TEXT NOT NULL,
              verdict TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_switches_hostname ON switches(hostname);
            """
        )


def log_event(level: str, message: str, service: str | None = None, hostname: str | None = None) -> None:
    """Log a line and journal it. A journal failure never reaches the caller."""
    level = level.upper()
    logger.log(_LEVELS.get(level, logging.INFO), message)
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, service, hostname, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level, service, hostname, message),
            )
    except sqlite3.Error as e:
        logger.error("Could not journal event: %s", e)


def record_switch(service: str, hostname: str, from_ip: str | None, to_ip: str, verdict: str) -> None:
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO switches (ts, service, hostname, from_ip, to_ip, verdict) VALUES (?, ?, ?, ?, ?, ?)",
                (utc_now(), service, hostname, from_ip, to_ip, verdict),
            )
    except sqlite3.Error as e:
        logger.error("Could not journal switch of %s to %s: %s", hostname, to_ip, e)


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def latest_switches(limit: int = 100, hostname: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if hostname:
            rows = conn.execute(
                "SELECT * FROM switches WHERE hostname=? ORDER BY id DESC LIMIT ?", (hostname, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM switches ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
