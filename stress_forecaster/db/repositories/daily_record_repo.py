"""
Repository for daily records — one row per (user, day).

Embedded documents (wellbeing snapshot, prediction) and nested lists (mood
entries, recommendations, alerts, sessions) are stored as JSON text and
re-validated through pydantic on load.

Optimistic concurrency
----------------------
``save()`` inserts when ``record_id`` is ``None`` and otherwise updates
``WHERE record_id = ? AND version = ?``.  Zero affected rows, or a
``UNIQUE (user_id, day)`` violation on insert, means another writer got
there first and raises ``RecordConflictError``.  The repository never
retries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date
from typing import Any, Optional

from stress_forecaster.db.repositories.base import BaseRepository
from stress_forecaster.errors import RecordConflictError
from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.models.record import (
    Alert,
    DailyRecord,
    ExerciseSession,
    MoodEntry,
    Recommendation,
    WellbeingSnapshot,
)
from stress_forecaster.taxonomy.stress_taxonomy import StressTier
from stress_forecaster.utils.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


def _dump_list(items: list[Any]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


def _load_list(raw: Optional[str], model: Any) -> list[Any]:
    if not raw:
        return []
    return [model.model_validate(item) for item in json.loads(raw)]


def _row_to_record(row: sqlite3.Row) -> DailyRecord:
    wellbeing = (
        WellbeingSnapshot.model_validate_json(row["wellbeing_json"])
        if row["wellbeing_json"] else None
    )
    prediction = (
        StressPrediction.model_validate_json(row["prediction_json"])
        if row["prediction_json"] else None
    )
    return DailyRecord(
        record_id=row["record_id"],
        user_id=row["user_id"],
        day=date.fromisoformat(row["day"]),
        wellbeing=wellbeing,
        stress_prediction=prediction,
        recommendations=_load_list(row["recommendations_json"], Recommendation),
        alerts=_load_list(row["alerts_json"], Alert),
        sessions=_load_list(row["sessions_json"], ExerciseSession),
        mood_entries=_load_list(row["mood_entries_json"], MoodEntry),
        version=row["version"],
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


def _record_columns(record: DailyRecord) -> dict[str, Any]:
    prediction = record.stress_prediction
    return {
        "wellbeing_json": record.wellbeing.model_dump_json() if record.wellbeing else None,
        "prediction_json": prediction.model_dump_json() if prediction else None,
        "prediction_score": prediction.score if prediction else None,
        "prediction_level": str(prediction.level) if prediction else None,
        "prediction_generated_at": prediction.generated_at.isoformat() if prediction else None,
        "recommendations_json": _dump_list(record.recommendations),
        "alerts_json": _dump_list(record.alerts),
        "sessions_json": _dump_list(record.sessions),
        "mood_entries_json": _dump_list(record.mood_entries),
    }


class DailyRecordRepository(BaseRepository):
    """Read/write access to the ``daily_records`` table."""

    def get(self, user_id: str, day: date) -> Optional[DailyRecord]:
        row = self.fetchone(
            "SELECT * FROM daily_records WHERE user_id = ? AND day = ?;",
            (user_id, day.isoformat()),
        )
        return _row_to_record(row) if row else None

    def get_by_id(self, record_id: int) -> Optional[DailyRecord]:
        row = self.fetchone(
            "SELECT * FROM daily_records WHERE record_id = ?;", (record_id,)
        )
        return _row_to_record(row) if row else None

    def find_or_create(self, user_id: str, day: date) -> DailyRecord:
        """Return the stored record, or a new unsaved one (``record_id`` None).

        The new record is only inserted by a later ``save()``; a read-only
        caller never leaves an empty row behind.
        """
        existing = self.get(user_id, day)
        if existing is not None:
            return existing
        return DailyRecord(user_id=user_id, day=day)

    def list_history(
        self,
        user_id: str,
        since: date,
        before: date,
        limit: Optional[int] = None,
    ) -> list[DailyRecord]:
        """Records with ``since <= day < before``, oldest first.

        Args:
            user_id: Owner.
            since:   Inclusive lower bound.
            before:  Exclusive upper bound.
            limit:   Keep at most this many of the *most recent* records.
        """
        sql = """
            SELECT * FROM daily_records
            WHERE user_id = ? AND day >= ? AND day < ?
            ORDER BY day DESC
        """
        params: tuple[Any, ...] = (user_id, since.isoformat(), before.isoformat())
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        rows = self.fetchall(sql + ";", params)
        return [_row_to_record(r) for r in reversed(rows)]

    def count_days_with_level(
        self,
        user_id: str,
        level: StressTier,
        since: date,
        before: date,
        limit: int,
    ) -> int:
        """Count days in ``[since, before)`` whose stored prediction has ``level``.

        At most ``limit`` rows are examined.
        """
        return int(self.scalar(
            """
            SELECT COUNT(*) FROM (
                SELECT 1 FROM daily_records
                WHERE user_id = ? AND prediction_level = ?
                  AND day >= ? AND day < ?
                LIMIT ?
            );
            """,
            (user_id, str(level), since.isoformat(), before.isoformat(), limit),
            default=0,
        ))

    def list_user_ids(self) -> list[str]:
        rows = self.fetchall(
            "SELECT DISTINCT user_id FROM daily_records ORDER BY user_id;"
        )
        return [r["user_id"] for r in rows]

    def list_for_user(self, user_id: str, limit: int = 30) -> list[DailyRecord]:
        """The user's most recent ``limit`` records, newest first."""
        rows = self.fetchall(
            "SELECT * FROM daily_records WHERE user_id = ? ORDER BY day DESC LIMIT ?;",
            (user_id, limit),
        )
        return [_row_to_record(r) for r in rows]

    def save(self, record: DailyRecord) -> DailyRecord:
        """Insert or version-checked update; mutates and returns ``record``.

        On success ``record.version`` is incremented and ``record_id`` /
        ``updated_at`` are set.

        Raises:
            RecordConflictError: The stored version moved on, or a record for
                (user, day) was inserted concurrently.
        """
        now = utcnow()
        columns = _record_columns(record)
        expected = record.version

        if record.record_id is None:
            try:
                cursor = self.execute(
                    """
                    INSERT INTO daily_records (
                        user_id, day, wellbeing_json, prediction_json,
                        prediction_score, prediction_level, prediction_generated_at,
                        recommendations_json, alerts_json, sessions_json,
                        mood_entries_json, version, created_at, updated_at
                    ) VALUES (
                        :user_id, :day, :wellbeing_json, :prediction_json,
                        :prediction_score, :prediction_level, :prediction_generated_at,
                        :recommendations_json, :alerts_json, :sessions_json,
                        :mood_entries_json, :version, :now, :now
                    );
                    """,
                    {
                        **columns,
                        "user_id": record.user_id,
                        "day": record.day.isoformat(),
                        "version": expected + 1,
                        "now": now.isoformat(),
                    },
                )
            except sqlite3.IntegrityError as exc:
                logger.warning(
                    "Insert conflict for user=%s day=%s: %s", record.user_id, record.day, exc
                )
                raise RecordConflictError(record.user_id, record.day, expected) from exc
            record.record_id = int(cursor.lastrowid)
            record.created_at = now
        else:
            cursor = self.execute(
                """
                UPDATE daily_records SET
                    wellbeing_json          = :wellbeing_json,
                    prediction_json         = :prediction_json,
                    prediction_score        = :prediction_score,
                    prediction_level        = :prediction_level,
                    prediction_generated_at = :prediction_generated_at,
                    recommendations_json    = :recommendations_json,
                    alerts_json             = :alerts_json,
                    sessions_json           = :sessions_json,
                    mood_entries_json       = :mood_entries_json,
                    version                 = :version + 1,
                    updated_at              = :now
                WHERE record_id = :record_id AND version = :version;
                """,
                {
                    **columns,
                    "record_id": record.record_id,
                    "version": expected,
                    "now": now.isoformat(),
                },
            )
            if cursor.rowcount == 0:
                raise RecordConflictError(record.user_id, record.day, expected)

        record.version = expected + 1
        record.updated_at = now
        return record
