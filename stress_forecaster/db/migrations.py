"""
Sequential schema migrations.

No down migrations and no external framework:

  1. ``schema_versions`` records which migration IDs have been applied.
  2. Each migration is a function taking a ``sqlite3.Connection``.
  3. ``run_migrations()`` applies, in ``MIGRATIONS`` order, whatever is
     not yet recorded.

The baseline tables come from ``apply_schema()``; migrations only carry
incremental changes made after a database was first created.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    """Return the migration IDs already recorded in ``schema_versions``."""
    _ensure_version_table(conn)
    rows = conn.execute("SELECT version_id FROM schema_versions;").fetchall()
    return {row["version_id"] for row in rows}


# ── Migration functions ────────────────────────────────────────────────────────

def migration_0001_baseline(conn: sqlite3.Connection) -> None:
    """Anchor the version history at the ``apply_schema()`` baseline."""


def migration_0002_add_run_model_version(conn: sqlite3.Connection) -> None:
    """Add ``model_version`` to ``run_metadata`` for databases created before it existed."""
    columns = {
        row[1] for row in conn.execute("PRAGMA table_info(run_metadata);").fetchall()
    }
    if "model_version" not in columns:
        conn.execute("ALTER TABLE run_metadata ADD COLUMN model_version TEXT;")
    conn.commit()


MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_baseline": (migration_0001_baseline, "Baseline schema"),
    "0002_add_run_model_version": (
        migration_0002_add_run_model_version,
        "Record scoring model version on run_metadata",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every migration not yet recorded.

    Args:
        conn: An open connection on which ``apply_schema()`` has run.

    Returns:
        Number of migrations applied by this call.

    Raises:
        Exception: The failing migration's error, after rollback.
    """
    applied = get_applied_versions(conn)
    count = 0

    for version_id, (fn, description) in MIGRATIONS.items():
        if version_id in applied:
            continue
        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            conn.execute(
                "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
                (version_id, description),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            logger.exception("Migration %s failed.", version_id)
            raise
        count += 1

    if count:
        logger.info("%d migration(s) applied.", count)
    else:
        logger.debug("Schema up to date; no migrations applied.")
    return count
