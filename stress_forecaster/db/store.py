"""
Record store — the persistence collaborator of the orchestrator and services.

``RecordStore`` is the interface the prediction pipeline depends on;
``SqliteRecordStore`` implements it over ``DailyRecordRepository`` with one
short-lived connection (and therefore one transaction) per operation.

Tests substitute in-memory fakes or ``unittest.mock`` objects that satisfy
the same protocol.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import Optional, Protocol

from stress_forecaster.config import DatabaseConfig
from stress_forecaster.db.connection import get_connection
from stress_forecaster.db.migrations import run_migrations
from stress_forecaster.db.repositories.daily_record_repo import DailyRecordRepository
from stress_forecaster.db.schema import apply_schema
from stress_forecaster.errors import RecordNotFoundError
from stress_forecaster.models.record import MAX_ALERTS_PER_RECORD, Alert, DailyRecord
from stress_forecaster.taxonomy.stress_taxonomy import StressTier
from stress_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Persistence operations used by the prediction pipeline."""

    def load_or_create(self, user_id: str, day: date) -> DailyRecord: ...

    def get(self, user_id: str, day: date) -> Optional[DailyRecord]: ...

    def fetch_history(self, user_id: str, since: date, before: date) -> list[DailyRecord]: ...

    def count_days_with_level(
        self, user_id: str, level: StressTier, since: date, before: date, limit: int
    ) -> int: ...

    def save(self, record: DailyRecord) -> DailyRecord: ...

    def append_alerts(
        self, user_id: str, day: date, alerts: Sequence[Alert], cap: int = MAX_ALERTS_PER_RECORD
    ) -> int: ...

    def acknowledge_alert(self, user_id: str, day: date, alert_id: str) -> Alert: ...

    def list_user_ids(self) -> list[str]: ...


class SqliteRecordStore:
    """``RecordStore`` backed by the ``daily_records`` table.

    Args:
        db_path:         SQLite file path.
        wal_mode:        Enable WAL journaling.
        busy_timeout_ms: Lock wait per connection.
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @classmethod
    def from_config(cls, config: DatabaseConfig, db_path: Optional[str] = None) -> "SqliteRecordStore":
        return cls(
            db_path or config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )

    def _connect(self):
        return get_connection(
            self.db_path, wal_mode=self.wal_mode, busy_timeout_ms=self.busy_timeout_ms
        )

    def initialize(self) -> int:
        """Create the schema and apply pending migrations; returns migrations applied."""
        with self._connect() as conn:
            apply_schema(conn)
            return run_migrations(conn)

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, user_id: str, day: date) -> Optional[DailyRecord]:
        with self._connect() as conn:
            return DailyRecordRepository(conn).get(user_id, day)

    def load_or_create(self, user_id: str, day: date) -> DailyRecord:
        with self._connect() as conn:
            return DailyRecordRepository(conn).find_or_create(user_id, day)

    def fetch_history(self, user_id: str, since: date, before: date) -> list[DailyRecord]:
        """Records with ``since <= day < before``, oldest first."""
        with self._connect() as conn:
            return DailyRecordRepository(conn).list_history(user_id, since, before)

    def recent_records(self, user_id: str, limit: int = 30) -> list[DailyRecord]:
        """The user's latest ``limit`` records, newest first."""
        with self._connect() as conn:
            return DailyRecordRepository(conn).list_for_user(user_id, limit)

    def count_days_with_level(
        self,
        user_id: str,
        level: StressTier,
        since: date,
        before: date,
        limit: int,
    ) -> int:
        with self._connect() as conn:
            return DailyRecordRepository(conn).count_days_with_level(
                user_id, level, since, before, limit
            )

    def list_user_ids(self) -> list[str]:
        with self._connect() as conn:
            return DailyRecordRepository(conn).list_user_ids()

    # ── Writes ───────────────────────────────────────────────────────────────

    def save(self, record: DailyRecord) -> DailyRecord:
        """Version-checked save.

        Raises:
            RecordConflictError: On a concurrent modification.
        """
        with self._connect() as conn:
            return DailyRecordRepository(conn).save(record)

    def append_alerts(
        self,
        user_id: str,
        day: date,
        alerts: Sequence[Alert],
        cap: int = MAX_ALERTS_PER_RECORD,
    ) -> int:
        """Append ``alerts`` to the latest stored record without exceeding ``cap``.

        Existing alerts are never replaced.  Alerts beyond the cap are
        dropped silently.

        Returns:
            Number of alerts actually appended.

        Raises:
            RecordConflictError: If the record changed between read and write.
        """
        if not alerts:
            return 0
        with self._connect() as conn:
            repo = DailyRecordRepository(conn)
            record = repo.find_or_create(user_id, day)
            room = max(0, cap - len(record.alerts))
            accepted = list(alerts)[:room]
            if not accepted:
                logger.debug(
                    "Alert cap reached for user=%s day=%s; %d alert(s) dropped.",
                    user_id, day, len(alerts),
                )
                return 0
            record.alerts = [*record.alerts, *accepted]
            repo.save(record)
        return len(accepted)

    def acknowledge_alert(self, user_id: str, day: date, alert_id: str) -> Alert:
        """Mark one alert acknowledged and return its updated copy.

        Raises:
            RecordNotFoundError: No record for (user, day) or no such alert.
            RecordConflictError: On a concurrent modification.
        """
        with self._connect() as conn:
            repo = DailyRecordRepository(conn)
            record = repo.get(user_id, day)
            if record is None:
                raise RecordNotFoundError(user_id, f"daily record for {day.isoformat()}")

            updated: Optional[Alert] = None
            alerts: list[Alert] = []
            for alert in record.alerts:
                if alert.alert_id == alert_id:
                    alert = alert.model_copy(
                        update={"acknowledged": True, "acknowledged_at": utcnow()}
                    )
                    updated = alert
                alerts.append(alert)

            if updated is None:
                raise RecordNotFoundError(user_id, f"alert '{alert_id}'")

            record.alerts = alerts
            repo.save(record)
        return updated
