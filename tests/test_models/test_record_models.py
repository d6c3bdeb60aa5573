"""Tests for stress_forecaster/models/record.py and models/meta.py."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from stress_forecaster.models.meta import RunMetadata
from stress_forecaster.models.record import (
    DailyRecord,
    MoodEntry,
    Recommendation,
    WellbeingSnapshot,
)
from stress_forecaster.taxonomy.stress_taxonomy import RecommendationType

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestWellbeingSnapshot:
    def test_has_data(self):
        assert WellbeingSnapshot(sleep_hours=7).has_data
        assert not WellbeingSnapshot(sleep_hours=0, steps=0).has_data
        assert not WellbeingSnapshot().has_data

    @pytest.mark.parametrize("field, value", [("sleep_hours", 25), ("sleep_hours", -1), ("steps", -5)])
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            WellbeingSnapshot(**{field: value})


class TestMoodEntry:
    @pytest.mark.parametrize("score, valid", [
        (0, True), (100, True), (55.5, True), (-0.1, False), (100.1, False),
        (None, False), (float("nan"), False), (float("inf"), False),
    ])
    def test_is_valid(self, score, valid):
        assert MoodEntry(mood_score=score, recorded_at=NOW).is_valid is valid


class TestRecommendation:
    def test_dedup_key_ignores_id_and_priority(self):
        a = Recommendation(type=RecommendationType.BREATHING, title="Breathe", description="d", priority=2)
        b = Recommendation(type=RecommendationType.BREATHING, title="Breathe", description="e", priority=5)
        assert a.rec_id != b.rec_id
        assert a.dedup_key == b.dedup_key == ("breathing", "Breathe")

    def test_priority_range(self):
        with pytest.raises(ValidationError):
            Recommendation(type=RecommendationType.URGENT, title="t", description="d", priority=6)

    def test_empty_title(self):
        with pytest.raises(ValidationError):
            Recommendation(type=RecommendationType.URGENT, title=" ", description="d")


class TestDailyRecord:
    def test_defaults(self):
        record = DailyRecord(user_id="u1", day=date(2026, 3, 10))
        assert record.version == 0
        assert record.record_id is None
        assert not record.has_signal_data

    def test_signal_data(self, make_record):
        assert make_record(moods=[50]).has_signal_data
        assert make_record(steps=4000).has_signal_data

    def test_empty_user_rejected(self):
        with pytest.raises(ValidationError):
            DailyRecord(user_id="  ", day=date(2026, 3, 10))

    def test_mutable(self, make_record, make_prediction):
        record = make_record()
        record.stress_prediction = make_prediction()
        assert record.stress_prediction.score == 40


class TestRunMetadata:
    def test_unknown_stage(self):
        with pytest.raises(ValidationError):
            RunMetadata(run_slug="r", pipeline_stage="train", config_snapshot={}, started_at=NOW)

    def test_status_values(self):
        run = RunMetadata(run_slug="r", pipeline_stage="scheduled_predict", config_snapshot={}, started_at=NOW)
        assert run.status == "started"
        with pytest.raises(ValidationError):
            RunMetadata(
                run_slug="r", pipeline_stage="scheduled_predict", status="done",
                config_snapshot={}, started_at=NOW,
            )
