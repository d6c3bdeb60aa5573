"""
Aggregator: combine the five sub-scores into one explainable prediction.

Total score
-----------
    total = round( Σ score_d × w_d  /  Σ w_d )      over present dimensions

    weights: sleep 0.25, activity 0.20, mood 0.30, consistency 0.15,
             historical 0.10                       (ScoringConfig.weights)

A missing dimension drops out of both numerator and denominator.  No
dimension at all → 50.  The total is clamped to [0, 100].

Tier
----
    ≤30 low  |  ≤50 medium  |  ≤70 high  |  >70 critical

Key factors
-----------
Each dimension whose sub-score diverges from the total by more than 10
points becomes a factor with ``impact = min(30, round(|diff|))``.  Factors
are sorted by impact (descending) and the top 3 kept.  If nothing diverges,
the dimension with the highest raw sub-score is reported with impact 15.

Confidence
----------
    0.50 base
    +0.20 sleep hours numeric     +0.15 steps numeric
    +0.15 any mood entry          +0.10 history ≥ 3    +0.10 history ≥ 7
clamped to [0.30, 0.95], 2 decimals.

Failure policy
--------------
``predict_stress()`` is the aggregator boundary: any unexpected exception is
logged and converted to the canned Default Prediction.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from stress_forecaster.config import ScoringConfig
from stress_forecaster.models.prediction import (
    StressBreakdown,
    StressFactor,
    StressPrediction,
)
from stress_forecaster.scoring.signals import (
    activity_score,
    as_number,
    consistency_score,
    historical_score,
    mood_score,
    round_half_up,
    sleep_score,
)
from stress_forecaster.taxonomy.stress_taxonomy import (
    FactorName,
    StressDimension,
    StressTier,
)
from stress_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

_DEFAULT_SCORING = ScoringConfig()

# Canned phrase per (dimension, tier bucket).  The bucket partition is the
# same as the severity tiers.
FACTOR_DESCRIPTIONS: dict[StressDimension, dict[StressTier, str]] = {
    StressDimension.SLEEP: {
        StressTier.LOW:      "Healthy sleep pattern",
        StressTier.MEDIUM:   "Sleep slightly affected",
        StressTier.HIGH:     "Moderate sleep problems",
        StressTier.CRITICAL: "Severe sleep disruption",
    },
    StressDimension.ACTIVITY: {
        StressTier.LOW:      "Optimal activity level",
        StressTier.MEDIUM:   "Regular physical activity",
        StressTier.HIGH:     "Insufficient physical activity",
        StressTier.CRITICAL: "Significant sedentary behaviour",
    },
    StressDimension.MOOD: {
        StressTier.LOW:      "Positive mood",
        StressTier.MEDIUM:   "Stable mood",
        StressTier.HIGH:     "Mood affected",
        StressTier.CRITICAL: "Mood severely affected",
    },
    StressDimension.CONSISTENCY: {
        StressTier.LOW:      "Very consistent routines",
        StressTier.MEDIUM:   "Moderately consistent routines",
        StressTier.HIGH:     "Irregular routines",
        StressTier.CRITICAL: "No established routines",
    },
    StressDimension.HISTORICAL: {
        StressTier.LOW:      "History of low stress",
        StressTier.MEDIUM:   "History of moderate stress",
        StressTier.HIGH:     "History of high stress",
        StressTier.CRITICAL: "History of critical stress",
    },
}

DEFAULT_PREDICTION_NOTE = "Default prediction due to a temporary error"
_RECOVERY_DESCRIPTION = "System recovering; using basic analysis"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SignalInputs:
    """Snapshot of everything the scorers consume for one (user, day).

    Attributes:
        sleep_hours:  Raw sleep value from the wellbeing snapshot.
        steps:        Raw step value from the wellbeing snapshot.
        mood_entries: Today's mood entries, oldest first.
        history:      Prior daily records, oldest first.
    """

    sleep_hours:  Any = None
    steps:        Any = None
    mood_entries: Sequence[Any] = field(default_factory=tuple)
    history:      Sequence[Any] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, record: Any, history: Optional[Sequence[Any]] = None) -> "SignalInputs":
        """Build inputs from a ``DailyRecord`` and its prior records."""
        wellbeing = getattr(record, "wellbeing", None)
        return cls(
            sleep_hours=getattr(wellbeing, "sleep_hours", None),
            steps=getattr(wellbeing, "steps", None),
            mood_entries=tuple(getattr(record, "mood_entries", None) or ()),
            history=tuple(history or ()),
        )


# ── Components ────────────────────────────────────────────────────────────────

def score_signals(inputs: SignalInputs, config: ScoringConfig = _DEFAULT_SCORING) -> StressBreakdown:
    """Run all five scorers."""
    return StressBreakdown(
        sleep=sleep_score(inputs.sleep_hours, config),
        activity=activity_score(inputs.steps, config),
        mood=mood_score(inputs.mood_entries, config),
        consistency=consistency_score(inputs.history, config),
        historical=historical_score(inputs.history, config),
    )


def weighted_total(breakdown: StressBreakdown, config: ScoringConfig = _DEFAULT_SCORING) -> int:
    """Weighted average over present dimensions, renormalised; 50 when none."""
    total = 0.0
    total_weight = 0.0
    for dimension, score in breakdown.present().items():
        weight = config.weights.get(str(dimension), 0.0)
        total += score * weight
        total_weight += weight

    if total_weight == 0:
        return config.neutral_score

    return max(0, min(100, round_half_up(total / total_weight)))


def determine_tier(score: float, config: ScoringConfig = _DEFAULT_SCORING) -> StressTier:
    """Map a total (or sub-) score to its severity tier."""
    if score <= config.low_max:
        return StressTier.LOW
    if score <= config.medium_max:
        return StressTier.MEDIUM
    if score <= config.high_max:
        return StressTier.HIGH
    return StressTier.CRITICAL


def factor_description(
    dimension: StressDimension,
    sub_score: Optional[float],
    config: ScoringConfig = _DEFAULT_SCORING,
) -> str:
    """Canned phrase for a dimension at the given sub-score (None → 50)."""
    value = sub_score if sub_score is not None else config.neutral_score
    return FACTOR_DESCRIPTIONS[dimension][determine_tier(value, config)]


def identify_key_factors(
    breakdown: StressBreakdown,
    total: int,
    config: ScoringConfig = _DEFAULT_SCORING,
) -> list[StressFactor]:
    """Select up to ``max_factors`` dimensions that diverge from the total."""
    present = breakdown.present()
    factors: list[StressFactor] = []

    for dimension, score in present.items():
        difference = abs(score - total)
        if difference > config.factor_threshold:
            factors.append(
                StressFactor(
                    factor=FactorName(str(dimension)),
                    impact=min(config.factor_impact_cap, round_half_up(difference)),
                    description=factor_description(dimension, score, config),
                )
            )

    if not factors and present:
        main = _main_dimension(present)
        factors.append(
            StressFactor(
                factor=FactorName(str(main)),
                impact=config.fallback_factor_impact,
                description=factor_description(main, present.get(main), config),
            )
        )

    # sorted() is stable: ties keep dimension order
    factors = sorted(factors, key=lambda f: f.impact, reverse=True)
    return factors[: config.max_factors]


def _main_dimension(present: dict[StressDimension, int]) -> StressDimension:
    """Dimension with the highest raw sub-score (mood if all are zero)."""
    main = StressDimension.MOOD
    highest = 0
    for dimension, score in present.items():
        if score > highest:
            highest = score
            main = dimension
    return main


def compute_confidence(inputs: SignalInputs, config: ScoringConfig = _DEFAULT_SCORING) -> float:
    """Data-availability confidence in [confidence_min, confidence_max]."""
    confidence = config.confidence_base

    if as_number(inputs.sleep_hours) is not None:
        confidence += config.confidence_sleep_bonus
    if as_number(inputs.steps) is not None:
        confidence += config.confidence_steps_bonus
    if len(inputs.mood_entries) > 0:
        confidence += config.confidence_mood_bonus

    history_len = len(inputs.history)
    if history_len >= config.confidence_history_short:
        confidence += config.confidence_history_short_bonus
    if history_len >= config.confidence_history_long:
        confidence += config.confidence_history_long_bonus

    clamped = max(config.confidence_min, min(config.confidence_max, confidence))
    return round(clamped, 2)


# ── Entry points ──────────────────────────────────────────────────────────────

def default_prediction(
    config: ScoringConfig = _DEFAULT_SCORING,
    now: Optional[datetime] = None,
) -> StressPrediction:
    """The canned, always-valid Default Prediction."""
    neutral = config.neutral_score
    return StressPrediction(
        score=neutral,
        level=StressTier.MEDIUM,
        factors=[
            StressFactor(
                factor=FactorName.SYSTEM_RECOVERY,
                impact=10,
                description=_RECOVERY_DESCRIPTION,
            )
        ],
        confidence=config.confidence_min,
        model_version=config.model_version,
        generated_at=now or utcnow(),
        breakdown=StressBreakdown(
            sleep=neutral,
            activity=neutral,
            mood=neutral,
            consistency=neutral,
            historical=neutral,
        ),
        note=DEFAULT_PREDICTION_NOTE,
    )


def aggregate(
    breakdown: StressBreakdown,
    inputs: SignalInputs,
    config: ScoringConfig = _DEFAULT_SCORING,
    now: Optional[datetime] = None,
) -> StressPrediction:
    """Build a prediction from an already-computed breakdown."""
    total = weighted_total(breakdown, config)
    return StressPrediction(
        score=total,
        level=determine_tier(total, config),
        factors=identify_key_factors(breakdown, total, config),
        confidence=compute_confidence(inputs, config),
        model_version=config.model_version,
        generated_at=now or utcnow(),
        breakdown=breakdown,
    )


def predict_stress(
    record: Any,
    history: Optional[Sequence[Any]] = None,
    config: ScoringConfig = _DEFAULT_SCORING,
    now: Optional[datetime] = None,
) -> StressPrediction:
    """Score one daily record against its history.  Never raises.

    Args:
        record:  Today's ``DailyRecord`` (``None`` yields the default).
        history: Prior ``DailyRecord`` objects, oldest first.
        config:  Scoring model parameters.
        now:     Generation timestamp override (tests).

    Returns:
        A valid ``StressPrediction`` — the Default Prediction on any failure.
    """
    if record is None:
        logger.warning("predict_stress called without a record; using default prediction.")
        return default_prediction(config, now)

    try:
        inputs = SignalInputs.from_record(record, history)
        breakdown = score_signals(inputs, config)
        prediction = aggregate(breakdown, inputs, config, now)
    except Exception as exc:
        logger.error("Stress aggregation failed, using default prediction: %s", exc)
        return default_prediction(config, now)

    logger.debug(
        "Prediction computed | score=%d level=%s breakdown=%s",
        prediction.score, prediction.level, breakdown.model_dump(),
    )
    return prediction
