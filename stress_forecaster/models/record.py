"""
Daily record models — the single shared document per (user, day).

``DailyRecord`` embeds everything the core reads and writes for one user on
one calendar day: the wellbeing snapshot (sleep, steps), mood entries, the
stress prediction, the regenerated recommendation list and the capped alert
list.

Mutability
----------
``DailyRecord`` is **not** frozen: services append mood entries and the
orchestrator replaces its prediction/recommendations before saving.  The
``version`` counter is bumped by the repository on every successful save and
is the optimistic-concurrency token.

Embedded value objects are frozen; updates go through ``model_copy``.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.taxonomy.stress_taxonomy import (
    AlertType,
    DataSource,
    RecommendationType,
    StressTier,
)
from stress_forecaster.utils.time_utils import utcnow

MAX_ALERTS_PER_RECORD = 5


def _new_id() -> str:
    return uuid4().hex


class WellbeingSnapshot(BaseModel):
    """Normalised sleep/step values for one day.

    Attributes:
        sleep_hours:  Hours slept (0–24), or ``None`` if not reported.
        steps:        Step count (≥ 0), or ``None`` if not reported.
        source:       Where the values came from.
        last_sync_at: UTC time of the most recent sync.
    """

    model_config = ConfigDict(frozen=True)

    sleep_hours: Optional[float] = Field(default=None, ge=0, le=24)
    steps: Optional[int] = Field(default=None, ge=0)
    source: DataSource = DataSource.MANUAL
    last_sync_at: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        """True when either sleep or steps carries a non-zero value."""
        return bool(self.sleep_hours) or bool(self.steps)


class MoodEntry(BaseModel):
    """One self-reported mood value.

    ``mood_score`` is intentionally unconstrained here: stored entries may be
    malformed and the mood scorer filters invalid values instead of failing
    the whole record load.
    """

    model_config = ConfigDict(frozen=True)

    mood_score: Optional[float] = None
    note: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)

    @property
    def is_valid(self) -> bool:
        """True when the score is a finite number within [0, 100]."""
        score = self.mood_score
        return score is not None and math.isfinite(score) and 0.0 <= score <= 100.0


class Recommendation(BaseModel):
    """A suggested action attached to a daily record.

    Attributes:
        rec_id:           Stable identifier used to mark completion.
        type:             Kind of action.
        title:            Short title; (type, title) is the dedup key.
        description:      One-sentence explanation.
        exercise_id:      Linked exercise-catalog item, if enriched.
        duration_minutes: Suggested duration, or ``None`` for open-ended.
        priority:         1 (lowest) to 5 (most urgent).
        completed:        Whether the user marked it done.
        completed_at:     When it was marked done.
    """

    model_config = ConfigDict(frozen=True)

    rec_id: str = Field(default_factory=_new_id)
    type: RecommendationType
    title: str
    description: str
    exercise_id: Optional[str] = None
    duration_minutes: Optional[int] = None
    priority: int = 3
    completed: bool = False
    completed_at: Optional[datetime] = None

    @field_validator("priority")
    @classmethod
    def validate_priority_range(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError(f"priority must be in [1, 5], got {v}.")
        return v

    @field_validator("title", "description")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title and description must be non-empty.")
        return v

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (str(self.type), self.title)


class Alert(BaseModel):
    """A user-facing stress alert.  Never auto-deleted; capped per record."""

    model_config = ConfigDict(frozen=True)

    alert_id: str = Field(default_factory=_new_id)
    type: AlertType
    title: str
    message: str
    stress_level: Optional[StressTier] = None
    delivered_at: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None


class ExerciseSession(BaseModel):
    """A catalog exercise performed by the user (stored, not scored)."""

    model_config = ConfigDict(frozen=True)

    exercise_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    stress_before: Optional[float] = None
    stress_after: Optional[float] = None
    effectiveness: Optional[float] = None


class DailyRecord(BaseModel):
    """One user's data for one calendar day.

    Attributes:
        record_id:         Auto-assigned DB PK; ``None`` before insertion.
        user_id:           Owner.
        day:               Calendar day (unique together with ``user_id``).
        wellbeing:         Sleep/step snapshot, if any was synced.
        stress_prediction: Latest prediction, if one was computed.
        recommendations:   Recommendations generated with that prediction.
        alerts:            Alerts emitted for this day (≤ 5).
        sessions:          Exercise sessions performed.
        mood_entries:      Mood entries, oldest first.
        version:           Optimistic-concurrency counter.
        created_at:        Row creation time (UTC).
        updated_at:        Last save time (UTC).
    """

    # Not frozen: services and the orchestrator update it before saving
    model_config = ConfigDict(frozen=False)

    record_id: Optional[int] = None
    user_id: str
    day: date
    wellbeing: Optional[WellbeingSnapshot] = None
    stress_prediction: Optional[StressPrediction] = None
    recommendations: list[Recommendation] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    sessions: list[ExerciseSession] = Field(default_factory=list)
    mood_entries: list[MoodEntry] = Field(default_factory=list)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("user_id must be non-empty.")
        return v

    @property
    def has_signal_data(self) -> bool:
        """True when the record carries any wellbeing or mood data."""
        has_wellbeing = self.wellbeing is not None and self.wellbeing.has_data
        return has_wellbeing or len(self.mood_entries) > 0
