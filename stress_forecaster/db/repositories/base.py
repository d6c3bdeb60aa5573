"""
Base repository: shared SQLite helpers.

Repositories receive an already-open ``sqlite3.Connection`` (normally from
``get_connection()``) and never manage its lifetime.  All SQL is explicit;
repositories take and return pydantic models, not raw dicts.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """SQL execution helpers shared by every repository.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        logger.debug("SQL: %s | params: %s", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        """Run a query and return its first row, or ``None``."""
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Params = (), default: Any = None) -> Any:
        """Run a query and return the first column of its first row."""
        row = self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]
