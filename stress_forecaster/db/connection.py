"""
SQLite connection management.

``open_connection()`` returns a configured connection:
  - ``sqlite3.Row`` factory so rows behave like dicts.
  - Busy timeout so concurrent prediction requests wait instead of failing
    immediately on a locked database.
  - Optional WAL journal mode (readers do not block the single writer).

``get_connection()`` wraps it in a context manager that commits on clean
exit, rolls back on exception and always closes.

Usage::

    from stress_forecaster.db.connection import get_connection

    with get_connection("data/db/stress_forecaster.db") as conn:
        conn.execute("SELECT ...")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator

if TYPE_CHECKING:
    from stress_forecaster.config import DatabaseConfig

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def open_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> sqlite3.Connection:
    """Open and configure a SQLite connection.

    Parent directories of a file database are created on demand.

    Args:
        db_path: Database file path, or ``":memory:"``.
        wal_mode: Enable WAL journaling (ignored for in-memory databases).
        busy_timeout_ms: Lock wait before ``OperationalError``.

    Returns:
        An open ``sqlite3.Connection``; the caller owns closing it.
    """
    if db_path != MEMORY_DB:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
    if wal_mode and db_path != MEMORY_DB:
        conn.execute("PRAGMA journal_mode = WAL;")
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured connection.

    Commits on clean exit, rolls back on exception, always closes.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or stays locked.
    """
    conn = open_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def connection_for(config: "DatabaseConfig", db_path: str | None = None):
    """``get_connection()`` using a ``DatabaseConfig`` section (path overridable)."""
    return get_connection(
        db_path or config.db_path,
        wal_mode=config.wal_mode,
        busy_timeout_ms=config.busy_timeout_ms,
    )
