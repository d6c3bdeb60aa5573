"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Tables
------
  1. daily_records  — one row per (user_id, day).  Nested lists (mood
                      entries, recommendations, alerts, sessions) and the
                      embedded wellbeing snapshot / prediction are stored as
                      JSON text.  The prediction's level, score and
                      generated_at are denormalised into columns so history
                      and persistent-stress lookups stay in SQL.
                      ``version`` is the optimistic-concurrency counter.
  2. run_metadata   — audit log of scheduled prediction sweeps.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_DAILY_RECORDS = """
CREATE TABLE IF NOT EXISTS daily_records (
    record_id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id                 TEXT    NOT NULL,
    day                     TEXT    NOT NULL,
    wellbeing_json          TEXT,
    prediction_json         TEXT,
    prediction_score        INTEGER CHECK (prediction_score BETWEEN 0 AND 100),
    prediction_level        TEXT    CHECK (prediction_level IN ('low', 'medium', 'high', 'critical')),
    prediction_generated_at TEXT,
    recommendations_json    TEXT    NOT NULL DEFAULT '[]',
    alerts_json             TEXT    NOT NULL DEFAULT '[]',
    sessions_json           TEXT    NOT NULL DEFAULT '[]',
    mood_entries_json       TEXT    NOT NULL DEFAULT '[]',
    version                 INTEGER NOT NULL DEFAULT 1,
    created_at              TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at              TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (user_id, day)
);
CREATE INDEX IF NOT EXISTS idx_daily_records_user_day
    ON daily_records (user_id, day);
CREATE INDEX IF NOT EXISTS idx_daily_records_level
    ON daily_records (prediction_level);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started'
                    CHECK (status IN ('started', 'success', 'partial', 'failed')),
    model_version   TEXT,
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT
);
CREATE INDEX IF NOT EXISTS idx_run_metadata_stage
    ON run_metadata (pipeline_stage, started_at);
"""

_ALL_DDL: list[str] = [
    _DDL_DAILY_RECORDS,
    _DDL_RUN_METADATA,
]

ALL_TABLE_NAMES: list[str] = [
    "daily_records",
    "run_metadata",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.debug("Schema applied: %d tables verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
