"""
Signal scorers: map one input dimension to a 0–100 stress sub-score.

Every scorer is a *total* function — it never raises.  Missing, zero, NaN or
otherwise invalid input resolves to a documented default instead of
propagating absence:

    sleep_score        absent / 0 / NaN → 70   (missing sleep is concerning)
    activity_score     absent / 0 / NaN → 60
    mood_score         no valid entries → 50   (neutral)
    consistency_score  < 3 history days → 50
    historical_score   no prior scores  → 50

Higher sub-scores mean more stress-indicative.  Mood inverts polarity: a high
reported mood yields a low sub-score.

History arguments are ordered chronologically (oldest first); "most recent
N" means the last N records.

All thresholds, bucket boundaries and defaults come from ``ScoringConfig``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, Optional

from stress_forecaster.config import ScoringConfig

_DEFAULT_SCORING = ScoringConfig()


# ── Helpers ───────────────────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (27.5 → 28).

    Python's ``round()`` uses banker's rounding; the scoring model does not.
    The 6-decimal pre-round absorbs float noise from weighted sums.
    """
    return int(math.floor(round(value, 6) + 0.5))


def as_number(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float, or ``None`` if that is impossible.

    Booleans are rejected even though ``bool`` subclasses ``int``.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _bucket(value: float, buckets: Sequence[tuple[float, int]], floor_score: int) -> int:
    """Return the sub-score of the first bucket whose threshold ``value`` meets."""
    for threshold, score in buckets:
        if value >= threshold:
            return score
    return floor_score


def _clamp_score(score: int) -> int:
    return max(0, min(100, score))


# ── Scorers ───────────────────────────────────────────────────────────────────

def sleep_score(sleep_hours: Any, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Sub-score from hours slept.

    7–9 h → 20 (optimal); 6–<7 → 40; >9 → 50; 5–<6 → 60; <5 → 80;
    absent / zero / NaN → 70.
    """
    hours = as_number(sleep_hours)
    if hours is None or hours == 0:
        return _clamp_score(config.sleep_missing_score)

    if config.sleep_optimal_min <= hours <= config.sleep_optimal_max:
        return _clamp_score(config.sleep_optimal_score)
    if hours > config.sleep_optimal_max:
        return _clamp_score(config.sleep_oversleep_score)
    return _clamp_score(_bucket(hours, config.sleep_buckets, config.sleep_floor_score))


def activity_score(steps: Any, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Sub-score from daily step count.

    ≥8000 → 20; 5000–<8000 → 40; 3000–<5000 → 60; <3000 → 80;
    absent / zero / NaN → 60.
    """
    count = as_number(steps)
    if count is None or count == 0:
        return _clamp_score(config.activity_missing_score)
    return _clamp_score(_bucket(count, config.step_buckets, config.step_floor_score))


def mood_score(mood_entries: Any, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Sub-score from the most recent mood entries.

    Averages the valid scores among the last 3 entries, then maps
    ≥80 → 20, ≥60 → 40, ≥40 → 60, ≥20 → 80, else 90.  Entries without a
    finite score in [0, 100] are ignored; no valid score → 50.
    """
    if not mood_entries:
        return _clamp_score(config.neutral_score)
    try:
        recent = list(mood_entries)[-config.mood_window:]
    except TypeError:
        return _clamp_score(config.neutral_score)

    valid: list[float] = []
    for entry in recent:
        value = as_number(getattr(entry, "mood_score", None))
        if value is not None and 0.0 <= value <= 100.0:
            valid.append(value)

    if not valid:
        return _clamp_score(config.neutral_score)

    average = sum(valid) / len(valid)
    return _clamp_score(_bucket(average, config.mood_buckets, config.mood_floor_score))


def consistency_score(history: Any, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Sub-score from how regularly the user logged data recently.

    Needs at least 3 historical records (else 50).  Over the most recent 7,
    the fraction carrying any wellbeing or mood data is the completeness;
    sub-score = round(100 × (1 − completeness)).
    """
    try:
        records = list(history or [])
    except TypeError:
        return _clamp_score(config.neutral_score)
    if len(records) < config.consistency_min_history:
        return _clamp_score(config.neutral_score)

    recent = records[-config.consistency_window:]
    with_data = sum(1 for r in recent if getattr(r, "has_signal_data", False))
    completeness = with_data / len(recent)
    return _clamp_score(round_half_up(100.0 - completeness * 100.0))


def historical_score(history: Any, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Sub-score from the user's recent stress predictions.

    Averages the prediction scores of the 5 most recent records, skipping
    records without one; none → 50.
    """
    try:
        records = list(history or [])
    except TypeError:
        return _clamp_score(config.neutral_score)
    if not records:
        return _clamp_score(config.neutral_score)

    scores: list[float] = []
    for record in records[-config.historical_window:]:
        prediction = getattr(record, "stress_prediction", None)
        value = as_number(getattr(prediction, "score", None))
        if value is not None:
            scores.append(value)

    if not scores:
        return _clamp_score(config.neutral_score)
    return _clamp_score(round_half_up(sum(scores) / len(scores)))
