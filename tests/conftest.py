"""
Shared pytest fixtures for the Stress Forecaster test suite.

Provides:
  - ``in_memory_db``: a fresh in-memory SQLite connection with the schema applied.
  - ``sqlite_store``: an initialized ``SqliteRecordStore`` on a tmp-path file.
  - ``memory_store``: a dict-backed ``RecordStore`` with the same version
    semantics, for orchestrator / service tests that do not need SQL.
  - ``make_record`` / ``make_prediction``: domain object factories.
  - ``NOW`` / ``TODAY``: the fixed clock used across tests.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Generator, Optional

import pytest

from stress_forecaster.db.connection import MEMORY_DB, open_connection
from stress_forecaster.db.schema import apply_schema
from stress_forecaster.db.store import SqliteRecordStore
from stress_forecaster.errors import RecordConflictError, RecordNotFoundError
from stress_forecaster.models.prediction import StressBreakdown, StressFactor, StressPrediction
from stress_forecaster.models.record import (
    MAX_ALERTS_PER_RECORD,
    Alert,
    DailyRecord,
    MoodEntry,
    WellbeingSnapshot,
)
from stress_forecaster.taxonomy.stress_taxonomy import FactorName, StressTier

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the schema applied."""
    conn = open_connection(MEMORY_DB)
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def sqlite_store(tmp_path) -> SqliteRecordStore:
    """An initialized file-backed store under the test's tmp dir."""
    store = SqliteRecordStore(str(tmp_path / "db" / "test.db"))
    store.initialize()
    return store


# ── In-memory store ───────────────────────────────────────────────────────────

class MemoryRecordStore:
    """Dict-backed ``RecordStore`` with optimistic version checks."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, date], DailyRecord] = {}
        self.saves = 0
        self._next_id = 1

    def _copy(self, record: Optional[DailyRecord]) -> Optional[DailyRecord]:
        return record.model_copy(deep=True) if record is not None else None

    def get(self, user_id: str, day: date) -> Optional[DailyRecord]:
        return self._copy(self.records.get((user_id, day)))

    def load_or_create(self, user_id: str, day: date) -> DailyRecord:
        return self.get(user_id, day) or DailyRecord(user_id=user_id, day=day)

    def fetch_history(self, user_id: str, since: date, before: date) -> list[DailyRecord]:
        rows = [
            r for (uid, d), r in self.records.items()
            if uid == user_id and since <= d < before
        ]
        return [self._copy(r) for r in sorted(rows, key=lambda r: r.day)]

    def count_days_with_level(
        self, user_id: str, level: StressTier, since: date, before: date, limit: int
    ) -> int:
        matches = [
            r for r in self.fetch_history(user_id, since, before)
            if r.stress_prediction is not None and r.stress_prediction.level == level
        ]
        return min(len(matches), limit)

    def save(self, record: DailyRecord) -> DailyRecord:
        key = (record.user_id, record.day)
        stored = self.records.get(key)
        if record.record_id is None:
            if stored is not None:
                raise RecordConflictError(record.user_id, record.day, record.version)
            record.record_id = self._next_id
            self._next_id += 1
        elif stored is None or stored.version != record.version:
            raise RecordConflictError(record.user_id, record.day, record.version)
        record.version += 1
        self.records[key] = record.model_copy(deep=True)
        self.saves += 1
        return record

    def append_alerts(
        self,
        user_id: str,
        day: date,
        alerts: Sequence[Alert],
        cap: int = MAX_ALERTS_PER_RECORD,
    ) -> int:
        record = self.load_or_create(user_id, day)
        accepted = list(alerts)[: max(0, cap - len(record.alerts))]
        if not accepted:
            return 0
        record.alerts = [*record.alerts, *accepted]
        self.save(record)
        return len(accepted)

    def acknowledge_alert(self, user_id: str, day: date, alert_id: str) -> Alert:
        record = self.get(user_id, day)
        if record is None:
            raise RecordNotFoundError(user_id, "record")
        for idx, alert in enumerate(record.alerts):
            if alert.alert_id == alert_id:
                updated = alert.model_copy(update={"acknowledged": True, "acknowledged_at": NOW})
                record.alerts[idx] = updated
                self.save(record)
                return updated
        raise RecordNotFoundError(user_id, f"alert '{alert_id}'")

    def list_user_ids(self) -> list[str]:
        return sorted({uid for uid, _ in self.records})


@pytest.fixture
def memory_store() -> MemoryRecordStore:
    return MemoryRecordStore()


# ── Domain object factories ───────────────────────────────────────────────────

def build_prediction(
    score: int = 40,
    level: StressTier = StressTier.MEDIUM,
    generated_at: datetime = NOW,
    factors: Optional[list[StressFactor]] = None,
) -> StressPrediction:
    return StressPrediction(
        score=score,
        level=level,
        factors=factors or [],
        confidence=0.7,
        model_version="1.2",
        generated_at=generated_at,
        breakdown=StressBreakdown(
            sleep=score, activity=score, mood=score, consistency=score, historical=score
        ),
    )


def build_record(
    user_id: str = "user-1",
    day: date = TODAY,
    sleep_hours: Optional[float] = None,
    steps: Optional[int] = None,
    moods: Sequence[float] = (),
    prediction: Optional[StressPrediction] = None,
) -> DailyRecord:
    wellbeing = None
    if sleep_hours is not None or steps is not None:
        wellbeing = WellbeingSnapshot(sleep_hours=sleep_hours, steps=steps)
    return DailyRecord(
        user_id=user_id,
        day=day,
        wellbeing=wellbeing,
        mood_entries=[MoodEntry(mood_score=m, recorded_at=NOW) for m in moods],
        stress_prediction=prediction,
    )


def build_history(levels: Sequence[StressTier], user_id: str = "user-1", end: date = TODAY) -> list[DailyRecord]:
    """One record per level, on consecutive days ending the day before ``end``."""
    scores = {StressTier.LOW: 20, StressTier.MEDIUM: 40, StressTier.HIGH: 60, StressTier.CRITICAL: 80}
    n = len(levels)
    return [
        build_record(
            user_id=user_id,
            day=end - timedelta(days=n - i),
            sleep_hours=8.0,
            prediction=build_prediction(scores[level], level),
        )
        for i, level in enumerate(levels)
    ]


@pytest.fixture
def make_prediction():
    return build_prediction


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def make_history():
    return build_history


@pytest.fixture
def sample_factor() -> StressFactor:
    return StressFactor(factor=FactorName.SLEEP, impact=20, description="Severe sleep disruption")
