"""
Tests for stress_forecaster/scoring/aggregator.py.

What we test
------------
Scenarios:
  - 8 h sleep, 9000 steps, mood 85, no history → 28 / low.
  - No data at all → sub-scores 70/60/50/50/50 → 57 / high.

weighted_total():
  - Renormalises over present dimensions; none present → 50.

determine_tier():
  - Inclusive upper bounds 30 / 50 / 70.

identify_key_factors():
  - Threshold > 10, impact capped at 30, at most 3, stable on ties.
  - Fallback to the highest raw sub-score with impact 15 (mood if all zero).

compute_confidence():
  - Additive bonuses, clamped to [0.30, 0.95].

predict_stress():
  - Returns the Default Prediction for a missing record or an internal error.
  - Total, tier and confidence stay in range over a grid of odd inputs.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from stress_forecaster.models.prediction import StressBreakdown
from stress_forecaster.scoring import aggregator
from stress_forecaster.scoring.aggregator import (
    DEFAULT_PREDICTION_NOTE,
    SignalInputs,
    compute_confidence,
    default_prediction,
    determine_tier,
    identify_key_factors,
    predict_stress,
    weighted_total,
)
from stress_forecaster.taxonomy.stress_taxonomy import FactorName, StressTier

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ── Scenarios ─────────────────────────────────────────────────────────────────

class TestScenarios:
    def test_good_day_without_history(self, make_record):
        record = make_record(sleep_hours=8, steps=9000, moods=[85])
        prediction = predict_stress(record, [], now=NOW)

        assert prediction.breakdown == StressBreakdown(
            sleep=20, activity=20, mood=20, consistency=50, historical=50
        )
        assert prediction.score == 28
        assert prediction.level == StressTier.LOW
        assert prediction.confidence == 0.95
        assert prediction.note is None
        assert [f.factor for f in prediction.factors] == [
            FactorName.CONSISTENCY, FactorName.HISTORICAL,
        ]
        assert all(f.impact == 22 for f in prediction.factors)

    def test_no_data_at_all(self, make_record):
        prediction = predict_stress(make_record(), [], now=NOW)

        assert prediction.breakdown == StressBreakdown(
            sleep=70, activity=60, mood=50, consistency=50, historical=50
        )
        assert prediction.score == 57
        assert prediction.level == StressTier.HIGH
        assert prediction.confidence == 0.5
        assert prediction.factors[0].factor == FactorName.SLEEP
        assert prediction.factors[0].impact == 13
        assert prediction.factors[0].description == "Moderate sleep problems"

    def test_generated_at_and_model_version(self, make_record):
        prediction = predict_stress(make_record(), [], now=NOW)
        assert prediction.generated_at == NOW
        assert prediction.model_version == "1.2"


# ── Weighted total ────────────────────────────────────────────────────────────

class TestWeightedTotal:
    def test_no_dimensions_is_neutral(self):
        assert weighted_total(StressBreakdown()) == 50

    def test_single_dimension(self):
        assert weighted_total(StressBreakdown(sleep=20)) == 20

    def test_renormalised(self):
        # (20*.25 + 80*.30) / .55 = 52.7
        assert weighted_total(StressBreakdown(sleep=20, mood=80)) == 53

    def test_extremes(self):
        assert weighted_total(StressBreakdown(sleep=0, activity=0, mood=0, consistency=0, historical=0)) == 0
        assert weighted_total(
            StressBreakdown(sleep=100, activity=100, mood=100, consistency=100, historical=100)
        ) == 100


# ── Tier ──────────────────────────────────────────────────────────────────────

class TestDetermineTier:
    @pytest.mark.parametrize("score, tier", [
        (0, StressTier.LOW), (30, StressTier.LOW),
        (31, StressTier.MEDIUM), (50, StressTier.MEDIUM),
        (51, StressTier.HIGH), (70, StressTier.HIGH),
        (71, StressTier.CRITICAL), (100, StressTier.CRITICAL),
    ])
    def test_boundaries(self, score, tier):
        assert determine_tier(score) == tier


# ── Key factors ───────────────────────────────────────────────────────────────

class TestKeyFactors:
    def test_at_most_three_and_capped(self):
        breakdown = StressBreakdown(sleep=80, activity=80, mood=0, consistency=0, historical=100)
        total = weighted_total(breakdown)
        factors = identify_key_factors(breakdown, total)

        assert len(factors) == 3
        assert all(f.impact == 30 for f in factors)
        # Equal impacts keep dimension order
        assert [f.factor for f in factors] == [
            FactorName.SLEEP, FactorName.ACTIVITY, FactorName.MOOD,
        ]

    def test_sorted_by_impact(self):
        breakdown = StressBreakdown(sleep=80, activity=50, mood=50, consistency=50, historical=30)
        factors = identify_key_factors(breakdown, 50)
        assert [f.factor for f in factors] == [FactorName.SLEEP, FactorName.HISTORICAL]
        assert [f.impact for f in factors] == [30, 20]

    def test_threshold_is_exclusive(self):
        breakdown = StressBreakdown(sleep=60, activity=50, mood=50, consistency=50, historical=50)
        factors = identify_key_factors(breakdown, 50)
        # |60 - 50| == 10 is not a divergence; fallback picks the highest sub-score
        assert len(factors) == 1
        assert factors[0].factor == FactorName.SLEEP
        assert factors[0].impact == 15

    def test_fallback_all_zero_reports_mood(self):
        breakdown = StressBreakdown(sleep=0, activity=0, mood=0, consistency=0, historical=0)
        factors = identify_key_factors(breakdown, 0)
        assert [(f.factor, f.impact) for f in factors] == [(FactorName.MOOD, 15)]

    def test_no_dimensions_no_factors(self):
        assert identify_key_factors(StressBreakdown(), 50) == []

    def test_descriptions_follow_sub_score_tier(self):
        breakdown = StressBreakdown(sleep=90, activity=10, mood=50, consistency=50, historical=50)
        factors = {f.factor: f.description for f in identify_key_factors(breakdown, 50)}
        assert factors[FactorName.SLEEP] == "Severe sleep disruption"
        assert factors[FactorName.ACTIVITY] == "Optimal activity level"


# ── Confidence ────────────────────────────────────────────────────────────────

class TestConfidence:
    def test_base_only(self):
        assert compute_confidence(SignalInputs()) == 0.5

    def test_history_bonuses(self, make_history):
        history = make_history([StressTier.LOW] * 7)
        assert compute_confidence(SignalInputs(history=history)) == 0.7

    def test_short_history_bonus(self, make_history):
        history = make_history([StressTier.LOW] * 3)
        assert compute_confidence(SignalInputs(history=history)) == 0.6

    def test_clamped_to_max(self, make_history, make_record):
        record = make_record(sleep_hours=8, steps=9000, moods=[70])
        inputs = SignalInputs.from_record(record, make_history([StressTier.LOW] * 7))
        assert compute_confidence(inputs) == 0.95

    def test_non_numeric_sleep_gets_no_bonus(self):
        assert compute_confidence(SignalInputs(sleep_hours="lots")) == 0.5


# ── Failure policy ────────────────────────────────────────────────────────────

class TestDefaultPrediction:
    def test_shape(self):
        prediction = default_prediction(now=NOW)
        assert prediction.score == 50
        assert prediction.level == StressTier.MEDIUM
        assert prediction.confidence == 0.3
        assert prediction.note == DEFAULT_PREDICTION_NOTE
        assert prediction.is_default
        assert [f.factor for f in prediction.factors] == [FactorName.SYSTEM_RECOVERY]
        assert set(prediction.breakdown.present().values()) == {50}

    def test_missing_record(self):
        assert predict_stress(None, now=NOW).is_default

    def test_internal_error(self, make_record, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("synthetic failure")

        monkeypatch.setattr(aggregator, "aggregate", _boom)
        prediction = predict_stress(make_record(sleep_hours=8), [], now=NOW)
        assert prediction.is_default
        assert prediction.score == 50


# ── Range property ────────────────────────────────────────────────────────────

class TestRangeProperty:
    def test_bounds_over_input_grid(self, make_record, make_history):
        sleeps = [None, 0, 3.5, 5.5, 6.5, 8, 10, float("nan")]
        steps = [None, 0, 1000, 4000, 6000, 12000]
        moods = [[], [0], [100], [-10, 55, 250]]
        histories = [[], make_history([StressTier.CRITICAL] * 8), make_history([StressTier.LOW] * 2)]

        for sleep, step, mood, history in itertools.product(sleeps, steps, moods, histories):
            record = make_record(moods=mood)
            inputs = SignalInputs(sleep_hours=sleep, steps=step, mood_entries=record.mood_entries, history=history)
            prediction = aggregator.aggregate(aggregator.score_signals(inputs), inputs, now=NOW)

            assert 0 <= prediction.score <= 100
            assert prediction.level == determine_tier(prediction.score)
            assert 0.30 <= prediction.confidence <= 0.95
            assert len(prediction.factors) <= 3
