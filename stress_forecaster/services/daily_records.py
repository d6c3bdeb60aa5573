"""
Daily record service — the write paths that feed the prediction pipeline
and the read paths that present its results.

Writes (mood entries, wellbeing syncs) only touch signal data; they never
compute a prediction inline.  When a ``RepredictionTrigger`` is attached
they enqueue a rate-limited background re-prediction after saving.

History statistics
------------------
``stress_history()`` summarises the days that carry a prediction:

  average_stress    mean score, rounded half up (0 when empty)
  trend             mean of the 3 most recent days vs. the 3 before them:
                    lower by more than 5 → improving, higher by more than
                    5 → declining, otherwise (or too little data) → stable
  high_stress_days  days at tier high or critical
  improvement_days  among the 5 most recent days, days whose score dropped
                    compared with the day before
  total_days        number of days with a prediction

Exercise sessions
-----------------
``record_session()`` appends a performed catalog exercise to the day's
record.  Sessions are stored and reported but never scored, so recording
one does not enqueue a re-prediction.

Weekly summary
--------------
``weekly_summary()`` covers the Monday to Sunday week containing
``week_start`` (default: today).  Every stored day of that week is listed;
averages skip days without a value.  Trends compare the mean of the first
half of the days (rounded up) with the mean of the rest, ignoring missing
and zero values:

  stress_trend      lower by more than 5 → improving, higher → declining
  sleep_trend       more by more than 0.5 h → improving, less → declining
  activity_trend    more by more than 1000 steps → improving, less → declining

Fewer than 3 days, or a half with no values, yields ``stable``.

Insights
--------
``insights()`` summarises every stored day of the last ``days`` days:
averages, sessions per day, and a stress trend comparing the last 7 days
with the 7 before them (a day without a prediction counts as 50).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from stress_forecaster.errors import RecordNotFoundError
from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.models.record import (
    Alert,
    DailyRecord,
    ExerciseSession,
    MoodEntry,
    Recommendation,
    WellbeingSnapshot,
)
from stress_forecaster.scoring.signals import round_half_up
from stress_forecaster.taxonomy.stress_taxonomy import DataSource, StressTier
from stress_forecaster.utils.logging import log_context
from stress_forecaster.utils.time_utils import days_before, utcnow

logger = logging.getLogger(__name__)

TREND_BAND = 5.0
TREND_WINDOW = 3
IMPROVEMENT_WINDOW = 5

SESSION_RECORD_LIMIT = 30
WEEKLY_MIN_DAYS = 3
WEEKLY_THRESHOLDS = {"stress": 5.0, "sleep": 0.5, "activity": 1000.0}
INSIGHT_WINDOW = 7
INSIGHT_MISSING_SCORE = 50


# ── Result models ─────────────────────────────────────────────────────────────

class StressHistoryEntry(BaseModel):
    """One day of the stress history view."""

    model_config = ConfigDict(frozen=True)

    day: date
    stress_score: int
    stress_level: StressTier
    sleep_hours: Optional[float] = None
    steps: Optional[int] = None


class StressStats(BaseModel):
    """Summary statistics over a stress history."""

    model_config = ConfigDict(frozen=True)

    average_stress: int = 0
    trend: str = "stable"
    high_stress_days: int = 0
    improvement_days: int = 0
    total_days: int = 0


class StressHistory(BaseModel):
    """History entries (newest first) plus their statistics."""

    model_config = ConfigDict(frozen=True)

    entries: list[StressHistoryEntry]
    stats: StressStats


class SessionEntry(BaseModel):
    """An exercise session together with the day it was recorded on."""

    model_config = ConfigDict(frozen=True)

    day: date
    session: ExerciseSession


class WeeklyDay(BaseModel):
    """One stored day inside a weekly summary."""

    model_config = ConfigDict(frozen=True)

    day: date
    stress_score: Optional[int] = None
    stress_level: Optional[StressTier] = None
    sleep_hours: Optional[float] = None
    steps: Optional[int] = None
    exercise_sessions: int = 0
    mood_entries: int = 0


class WeeklyStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_days: int = 0
    days_with_data: int = 0
    average_stress: int = 0
    average_sleep: float = 0.0
    average_steps: int = 0
    total_exercise_sessions: int = 0
    total_mood_entries: int = 0
    stress_trend: str = "stable"
    sleep_trend: str = "stable"
    activity_trend: str = "stable"


class WeeklySummary(BaseModel):
    """Monday to Sunday window, its stored days (oldest first) and statistics."""

    model_config = ConfigDict(frozen=True)

    week_start: date
    week_end: date
    days: list[WeeklyDay]
    stats: WeeklyStats


class StressInsights(BaseModel):
    """Aggregate view over a look-back window of stored days."""

    model_config = ConfigDict(frozen=True)

    total_days: int = 0
    average_stress: int = 0
    average_sleep: float = 0.0
    average_steps: int = 0
    exercise_frequency: float = 0.0
    stress_trend: str = "stable"


def _mean_of_present(values: Sequence[Optional[float]]) -> float:
    """Mean of the non-missing, non-zero values; 0.0 when there are none."""
    present = [v for v in values if v]
    return sum(present) / len(present) if present else 0.0


def _round_tenth(value: float) -> float:
    return round_half_up(value * 10) / 10


def compute_weekly_trend(
    values: Sequence[Optional[float]],
    threshold: float,
    lower_is_better: bool = False,
) -> str:
    """Compare the first half of chronological ``values`` with the second.

    The first half takes the extra element when the count is odd.
    """
    if len(values) < WEEKLY_MIN_DAYS:
        return "stable"

    split = math.ceil(len(values) / 2)
    first_avg = _mean_of_present(values[:split])
    second_avg = _mean_of_present(values[split:])
    if first_avg == 0 or second_avg == 0:
        return "stable"

    difference = second_avg - first_avg
    if lower_is_better:
        difference = -difference
    if difference > threshold:
        return "improving"
    if difference < -threshold:
        return "declining"
    return "stable"


def _score(record: DailyRecord) -> Optional[int]:
    return record.stress_prediction.score if record.stress_prediction is not None else None


def _sleep(record: DailyRecord) -> Optional[float]:
    return getattr(record.wellbeing, "sleep_hours", None)


def _steps(record: DailyRecord) -> Optional[int]:
    return getattr(record.wellbeing, "steps", None)


def compute_weekly_stats(records: Sequence[DailyRecord]) -> WeeklyStats:
    """Statistics over chronologically ordered records of one week."""
    if not records:
        return WeeklyStats()

    scores = [_score(r) for r in records]
    sleeps = [_sleep(r) for r in records]
    steps = [_steps(r) for r in records]
    present_scores = [s for s in scores if s is not None]

    return WeeklyStats(
        total_days=len(records),
        days_with_data=sum(
            1 for r in records
            if r.stress_prediction is not None or r.has_signal_data or r.sessions
        ),
        average_stress=(
            round_half_up(sum(present_scores) / len(present_scores)) if present_scores else 0
        ),
        average_sleep=_round_tenth(_mean_of_present(sleeps)),
        average_steps=round_half_up(_mean_of_present(steps)),
        total_exercise_sessions=sum(len(r.sessions) for r in records),
        total_mood_entries=sum(len(r.mood_entries) for r in records),
        stress_trend=compute_weekly_trend(
            scores, WEEKLY_THRESHOLDS["stress"], lower_is_better=True
        ),
        sleep_trend=compute_weekly_trend(sleeps, WEEKLY_THRESHOLDS["sleep"]),
        activity_trend=compute_weekly_trend(steps, WEEKLY_THRESHOLDS["activity"]),
    )


def compute_insights(records: Sequence[DailyRecord]) -> StressInsights:
    """Insights over chronologically ordered records."""
    if not records:
        return StressInsights()

    scores = [_score(r) for r in records]
    present_scores = [s for s in scores if s is not None]

    trend = "stable"
    if len(records) >= INSIGHT_WINDOW:
        filled = [INSIGHT_MISSING_SCORE if s is None else s for s in scores]
        recent = filled[-INSIGHT_WINDOW:]
        previous = filled[-2 * INSIGHT_WINDOW:-INSIGHT_WINDOW]
        if previous:
            recent_avg = sum(recent) / len(recent)
            previous_avg = sum(previous) / len(previous)
            if recent_avg < previous_avg - TREND_BAND:
                trend = "improving"
            elif recent_avg > previous_avg + TREND_BAND:
                trend = "declining"

    return StressInsights(
        total_days=len(records),
        average_stress=(
            round_half_up(sum(present_scores) / len(present_scores)) if present_scores else 0
        ),
        average_sleep=_round_tenth(_mean_of_present([_sleep(r) for r in records])),
        average_steps=round_half_up(_mean_of_present([_steps(r) for r in records])),
        exercise_frequency=sum(len(r.sessions) for r in records) / len(records),
        stress_trend=trend,
    )


def compute_stress_stats(scores: Sequence[int], levels: Sequence[StressTier]) -> StressStats:
    """Statistics over chronologically ordered scores (oldest first)."""
    if not scores:
        return StressStats()

    average = round_half_up(sum(scores) / len(scores))

    recent = scores[-TREND_WINDOW:]
    previous = scores[-2 * TREND_WINDOW:-TREND_WINDOW]
    trend = "stable"
    if previous:
        recent_avg = sum(recent) / len(recent)
        previous_avg = sum(previous) / len(previous)
        if recent_avg < previous_avg - TREND_BAND:
            trend = "improving"
        elif recent_avg > previous_avg + TREND_BAND:
            trend = "declining"

    high_days = sum(1 for level in levels if level.is_elevated)

    window = scores[-IMPROVEMENT_WINDOW:]
    improvement_days = sum(
        1 for earlier, later in zip(window, window[1:]) if later < earlier
    )

    return StressStats(
        average_stress=average,
        trend=trend,
        high_stress_days=high_days,
        improvement_days=improvement_days,
        total_days=len(scores),
    )


# ── Service ───────────────────────────────────────────────────────────────────

class DailyRecordService:
    """Mood, wellbeing, completion and alert operations for one store.

    Args:
        store:   ``RecordStore`` implementation.
        trigger: Optional ``RepredictionTrigger`` notified after signal writes.
        clock:   Returns the current UTC datetime.
    """

    def __init__(
        self,
        store: Any,
        trigger: Optional[Any] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.trigger = trigger
        self._clock = clock

    def _day(self, day: Optional[date]) -> date:
        return day or self._clock().date()

    def _request_reprediction(self, user_id: str, day: date) -> None:
        if self.trigger is None:
            return
        try:
            self.trigger.request(user_id, day)
        except Exception as exc:
            logger.warning(
                "Could not enqueue re-prediction: %s", exc, extra=log_context(user_id, day),
            )

    # ── Signal writes ─────────────────────────────────────────────────────────

    def add_mood_entry(
        self,
        user_id: str,
        mood_score: float,
        note: Optional[str] = None,
        day: Optional[date] = None,
    ) -> MoodEntry:
        """Append a mood entry to the day's record and enqueue a re-prediction.

        Raises:
            ValueError: If ``mood_score`` is outside [0, 100].
            RecordConflictError: On a concurrent modification.
        """
        entry = MoodEntry(mood_score=mood_score, note=note, recorded_at=self._clock())
        if not entry.is_valid:
            raise ValueError(f"mood_score must be within [0, 100], got {mood_score}.")

        day = self._day(day)
        record = self.store.load_or_create(user_id, day)
        record.mood_entries = [*record.mood_entries, entry]
        self.store.save(record)
        logger.info("Mood entry saved | score=%s", mood_score, extra=log_context(user_id, day))

        self._request_reprediction(user_id, day)
        return entry

    def sync_wellbeing(
        self,
        user_id: str,
        sleep_hours: Optional[float] = None,
        steps: Optional[int] = None,
        source: Optional[DataSource] = None,
        day: Optional[date] = None,
        skip_reprediction: bool = False,
    ) -> WellbeingSnapshot:
        """Upsert the day's wellbeing snapshot.

        A field passed as ``None`` keeps its previously stored value.

        Raises:
            pydantic.ValidationError: If a value is out of range.
            RecordConflictError: On a concurrent modification.
        """
        day = self._day(day)
        record = self.store.load_or_create(user_id, day)
        previous = record.wellbeing

        snapshot = WellbeingSnapshot(
            sleep_hours=sleep_hours if sleep_hours is not None else getattr(previous, "sleep_hours", None),
            steps=steps if steps is not None else getattr(previous, "steps", None),
            source=source or DataSource.GOOGLE_FIT,
            last_sync_at=self._clock(),
        )
        record.wellbeing = snapshot
        self.store.save(record)
        logger.info(
            "Wellbeing synced | sleep=%s steps=%s source=%s",
            snapshot.sleep_hours, snapshot.steps, snapshot.source,
            extra=log_context(user_id, day),
        )

        if not skip_reprediction:
            self._request_reprediction(user_id, day)
        return snapshot

    # ── Recommendations and alerts ───────────────────────────────────────────

    def complete_recommendation(
        self,
        user_id: str,
        rec_id: str,
        day: Optional[date] = None,
    ) -> Recommendation:
        """Mark a recommendation completed.

        Raises:
            RecordNotFoundError: No record for the day or no such recommendation.
            RecordConflictError: On a concurrent modification.
        """
        day = self._day(day)
        record = self.store.get(user_id, day)
        if record is None:
            raise RecordNotFoundError(user_id, f"daily record for {day.isoformat()}")

        completed: Optional[Recommendation] = None
        updated: list[Recommendation] = []
        for rec in record.recommendations:
            if rec.rec_id == rec_id:
                rec = rec.model_copy(update={"completed": True, "completed_at": self._clock()})
                completed = rec
            updated.append(rec)

        if completed is None:
            raise RecordNotFoundError(user_id, f"recommendation '{rec_id}'")

        record.recommendations = updated
        self.store.save(record)
        return completed

    def acknowledge_alert(self, user_id: str, alert_id: str, day: Optional[date] = None) -> Alert:
        """Mark an alert acknowledged.

        Raises:
            RecordNotFoundError: No record for the day or no such alert.
        """
        return self.store.acknowledge_alert(user_id, self._day(day), alert_id)

    def active_recommendations(self, user_id: str, day: Optional[date] = None) -> list[Recommendation]:
        """Uncompleted recommendations, highest priority first."""
        record = self.store.get(user_id, self._day(day))
        if record is None:
            return []
        active = [r for r in record.recommendations if not r.completed]
        return sorted(active, key=lambda r: r.priority, reverse=True)

    def active_alerts(self, user_id: str, day: Optional[date] = None) -> list[Alert]:
        """Unacknowledged alerts, newest first."""
        record = self.store.get(user_id, self._day(day))
        if record is None:
            return []
        active = [a for a in record.alerts if not a.acknowledged]
        return sorted(active, key=lambda a: a.delivered_at, reverse=True)

    def current_prediction(
        self,
        user_id: str,
        day: Optional[date] = None,
    ) -> Optional[tuple[StressPrediction, list[Recommendation]]]:
        """Stored prediction and recommendations for the day, without recomputing."""
        record = self.store.get(user_id, self._day(day))
        if record is None or record.stress_prediction is None:
            return None
        return record.stress_prediction, list(record.recommendations)

    # ── History ───────────────────────────────────────────────────────────────

    def stress_history(self, user_id: str, days: int = 30) -> StressHistory:
        """Predicted days within the last ``days`` days (today included)."""
        today = self._clock().date()
        records: list[DailyRecord] = self.store.fetch_history(
            user_id, days_before(today, days), today + timedelta(days=1)
        )
        predicted = [r for r in records if r.stress_prediction is not None]

        stats = compute_stress_stats(
            [r.stress_prediction.score for r in predicted],
            [r.stress_prediction.level for r in predicted],
        )
        entries = [
            StressHistoryEntry(
                day=r.day,
                stress_score=r.stress_prediction.score,
                stress_level=r.stress_prediction.level,
                sleep_hours=getattr(r.wellbeing, "sleep_hours", None),
                steps=getattr(r.wellbeing, "steps", None),
            )
            for r in reversed(predicted)
        ]
        return StressHistory(entries=entries, stats=stats)

    # ── Exercise sessions ─────────────────────────────────────────────────────

    def record_session(
        self,
        user_id: str,
        exercise_id: str,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        stress_before: Optional[float] = None,
        stress_after: Optional[float] = None,
        day: Optional[date] = None,
    ) -> ExerciseSession:
        """Append a performed exercise to the day's record.

        Missing timestamps default to now.  When both stress readings are
        given, ``effectiveness`` is the drop from before to after.

        Raises:
            ValueError: Empty ``exercise_id``, a stress reading outside
                [0, 100], or ``completed_at`` earlier than ``started_at``.
            RecordConflictError: On a concurrent modification.
        """
        if not exercise_id.strip():
            raise ValueError("exercise_id must be non-empty.")
        for name, value in (("stress_before", stress_before), ("stress_after", stress_after)):
            if value is not None and not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} must be within [0, 100], got {value}.")

        now = self._clock()
        started_at = started_at or now
        completed_at = completed_at or now
        if completed_at < started_at:
            raise ValueError("completed_at must not be earlier than started_at.")

        effectiveness = None
        if stress_before is not None and stress_after is not None:
            effectiveness = stress_before - stress_after

        session = ExerciseSession(
            exercise_id=exercise_id,
            started_at=started_at,
            completed_at=completed_at,
            stress_before=stress_before,
            stress_after=stress_after,
            effectiveness=effectiveness,
        )
        day = self._day(day)
        record = self.store.load_or_create(user_id, day)
        record.sessions = [*record.sessions, session]
        self.store.save(record)
        logger.info(
            "Exercise session saved | exercise=%s", exercise_id, extra=log_context(user_id, day),
        )
        return session

    def list_sessions(
        self,
        user_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: int = SESSION_RECORD_LIMIT,
    ) -> list[SessionEntry]:
        """Sessions from the newest ``limit`` days that have any, newest day first.

        ``since`` and ``until`` are inclusive; either may be omitted.
        """
        before = until + timedelta(days=1) if until is not None else date.max
        records = self.store.fetch_history(user_id, since or date.min, before)
        with_sessions = [r for r in reversed(records) if r.sessions][:limit]
        return [
            SessionEntry(day=r.day, session=session)
            for r in with_sessions
            for session in r.sessions
        ]

    # ── Summaries ─────────────────────────────────────────────────────────────

    def weekly_summary(self, user_id: str, week_start: Optional[date] = None) -> WeeklySummary:
        """Summary of the Monday to Sunday week containing ``week_start``."""
        anchor = week_start or self._clock().date()
        monday = anchor - timedelta(days=anchor.weekday())
        sunday = monday + timedelta(days=6)

        records: list[DailyRecord] = self.store.fetch_history(
            user_id, monday, sunday + timedelta(days=1)
        )
        days = [
            WeeklyDay(
                day=r.day,
                stress_score=_score(r),
                stress_level=getattr(r.stress_prediction, "level", None),
                sleep_hours=_sleep(r),
                steps=_steps(r),
                exercise_sessions=len(r.sessions),
                mood_entries=len(r.mood_entries),
            )
            for r in records
        ]
        return WeeklySummary(
            week_start=monday,
            week_end=sunday,
            days=days,
            stats=compute_weekly_stats(records),
        )

    def insights(self, user_id: str, days: int = 30) -> StressInsights:
        """Insights over every stored day within the last ``days`` days (today included)."""
        today = self._clock().date()
        records = self.store.fetch_history(
            user_id, days_before(today, days), today + timedelta(days=1)
        )
        return compute_insights(records)
