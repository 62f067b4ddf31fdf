from __future__ import annotations

import sqlite3
from pathlib import Path

DB_FILENAME = "flexkids_local.db"
DEFAULT_BUSY_TIMEOUT_MS = 30000


def configure_sqlite_connection(connection: sqlite3.Connection, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")


def get_connection(
    db_path: Path,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(
        db_path,
        check_same_thread=check_same_thread,
        timeout=max(1.0, busy_timeout_ms / 1000),
    )
    configure_sqlite_connection(connection, busy_timeout_ms=busy_timeout_ms)
    return connection
