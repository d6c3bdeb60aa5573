"""
Tests for stress_forecaster/pipeline/orchestrator.py.

What we test
------------
Cache:
  - A prediction younger than the staleness window is returned unchanged,
    nothing is written; an older one is recomputed.
  - A second call right after the first is a cache hit (idempotent).
  - A cached Default Prediction still carries the degraded warning.
  - ``force_refresh`` bypasses the cache.

Failure policy:
  - Predictor failure → Default Prediction, degraded warning, still persisted.
  - History fetch failure → prediction with empty history.
  - Persist failure / version conflict → result still returned.
  - Unexpected error before any step → default + fallback + failure warning.

Persistence:
  - Signal data written concurrently is kept (re-read before save).
  - Repeated critical predictions never push alerts past the cap.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from stress_forecaster.clients.exercise_catalog import HttpCatalogClient
from stress_forecaster.config import AppConfig, CatalogConfig
from stress_forecaster.errors import RecordConflictError
from stress_forecaster.models.record import MoodEntry
from stress_forecaster.pipeline.orchestrator import (
    DEGRADED_WARNING,
    FAILURE_WARNING,
    PredictionOrchestrator,
    build_orchestrator,
)
from stress_forecaster.taxonomy.stress_taxonomy import RecommendationType, StressTier

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
NO_CATALOG = AppConfig(catalog=CatalogConfig(enabled=False))


def _orchestrator(store, **kwargs) -> PredictionOrchestrator:
    kwargs.setdefault("config", NO_CATALOG)
    return PredictionOrchestrator(store, clock=lambda: NOW, **kwargs)


def _fixed_predictor(prediction):
    def predictor(record, history, config, now):
        return prediction
    return predictor


# ── Cache ─────────────────────────────────────────────────────────────────────

class TestCache:
    def test_fresh_prediction_returned_unchanged(self, memory_store, make_record, make_prediction):
        stored_at = NOW - timedelta(hours=3)
        memory_store.save(make_record(prediction=make_prediction(44, generated_at=stored_at)))
        saves = memory_store.saves

        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY)

        assert result.cached
        assert result.prediction.generated_at == stored_at
        assert result.prediction.score == 44
        assert result.warning is None
        assert memory_store.saves == saves

    def test_stale_prediction_recomputed(self, memory_store, make_record, make_prediction):
        memory_store.save(make_record(
            sleep_hours=8, prediction=make_prediction(44, generated_at=NOW - timedelta(hours=7)),
        ))
        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY)

        assert not result.cached
        assert result.prediction.generated_at == NOW
        assert memory_store.get("user-1", TODAY).stress_prediction.generated_at == NOW

    def test_future_dated_prediction_is_fresh(self, memory_store, make_record, make_prediction):
        memory_store.save(make_record(prediction=make_prediction(44, generated_at=NOW + timedelta(hours=1))))
        assert _orchestrator(memory_store).compute_prediction("user-1", TODAY).cached

    def test_second_call_is_cache_hit(self, memory_store):
        orchestrator = _orchestrator(memory_store)
        first = orchestrator.compute_prediction("user-1", TODAY)
        saves = memory_store.saves
        second = orchestrator.compute_prediction("user-1", TODAY)

        assert second.cached
        assert second.prediction == first.prediction
        assert second.to_dict()["recommendations"] == first.to_dict()["recommendations"]
        assert memory_store.saves == saves

    def test_cached_default_keeps_warning(self, memory_store):
        def broken(*args, **kwargs):
            raise RuntimeError("synthetic failure")

        _orchestrator(memory_store, predictor=broken).compute_prediction("user-1", TODAY)
        later = PredictionOrchestrator(
            memory_store, config=NO_CATALOG, clock=lambda: NOW + timedelta(hours=1),
        )
        result = later.compute_prediction("user-1", TODAY)

        assert result.cached
        assert result.prediction.is_default
        assert result.warning == DEGRADED_WARNING
        assert result.to_dict()["warning"] == DEGRADED_WARNING

    def test_force_refresh_bypasses_cache(self, memory_store, make_record, make_prediction):
        stored_at = NOW - timedelta(minutes=10)
        memory_store.save(make_record(moods=[90], prediction=make_prediction(44, generated_at=stored_at)))

        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY, force_refresh=True)
        assert not result.cached
        assert result.prediction.generated_at == NOW

    def test_day_defaults_to_clock(self, memory_store):
        _orchestrator(memory_store).compute_prediction("user-1")
        assert memory_store.get("user-1", TODAY) is not None


# ── Failure policy ────────────────────────────────────────────────────────────

class TestFailurePolicy:
    def test_predictor_failure_uses_default(self, memory_store):
        def broken(*args, **kwargs):
            raise RuntimeError("synthetic failure")

        result = _orchestrator(memory_store, predictor=broken).compute_prediction("user-1", TODAY)

        assert result.prediction.score == 50
        assert result.prediction.level == StressTier.MEDIUM
        assert result.prediction.confidence == 0.3
        assert result.warning == DEGRADED_WARNING
        assert result.recommendations
        assert memory_store.get("user-1", TODAY).stress_prediction.is_default

    def test_history_failure_uses_empty_history(self, memory_store, make_prediction):
        seen = []

        def spy(record, history, config, now):
            seen.append(list(history))
            return make_prediction(30, StressTier.LOW, generated_at=now)

        memory_store.fetch_history = MagicMock(side_effect=OSError("db locked"))
        result = _orchestrator(memory_store, predictor=spy).compute_prediction("user-1", TODAY)

        assert seen == [[]]
        assert result.prediction.score == 30
        assert result.warning is None

    def test_history_window(self, memory_store, make_history, make_prediction):
        for record in make_history([StressTier.LOW] * 20):
            memory_store.save(record)
        seen = []

        def spy(record, history, config, now):
            seen.append(history)
            return make_prediction(generated_at=now)

        _orchestrator(memory_store, predictor=spy).compute_prediction("user-1", TODAY)
        days = [r.day for r in seen[0]]
        assert len(days) == 14
        assert days == sorted(days)
        assert days[-1] == TODAY - timedelta(days=1)

    def test_persist_failure_still_returns(self, memory_store):
        memory_store.save = MagicMock(side_effect=OSError("disk full"))
        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY)

        assert 0 <= result.prediction.score <= 100
        assert result.warning is None
        assert memory_store.get("user-1", TODAY) is None

    def test_persist_conflict_dropped(self, memory_store):
        memory_store.save = MagicMock(side_effect=RecordConflictError("user-1", TODAY, 0))
        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY)
        assert not result.prediction.is_default

    def test_unexpected_failure_returns_fallback(self):
        store = MagicMock()
        store.load_or_create.side_effect = RuntimeError("connection refused")

        result = _orchestrator(store).compute_prediction("user-1", TODAY)

        assert result.prediction.is_default
        assert result.warning == FAILURE_WARNING
        assert [(r.type, r.title) for r in result.recommendations] == [
            (RecommendationType.BREATHING, "Mindful breathing"),
        ]

    def test_to_dict_includes_warning_only_when_degraded(self, memory_store):
        payload = _orchestrator(memory_store).compute_prediction("user-1", TODAY).to_dict()
        assert "warning" not in payload
        assert payload["prediction"]["level"] in {t.value for t in StressTier}


# ── Persistence and alerts ────────────────────────────────────────────────────

class TestPersistence:
    def test_recommendations_stored_with_prediction(self, memory_store):
        result = _orchestrator(memory_store).compute_prediction("user-1", TODAY)
        stored = memory_store.get("user-1", TODAY)
        assert stored.stress_prediction == result.prediction
        assert [r.rec_id for r in stored.recommendations] == [r.rec_id for r in result.recommendations]

    def test_concurrent_mood_entry_kept(self, memory_store, make_record, make_prediction):
        memory_store.save(make_record(sleep_hours=7.5))

        def racing_predictor(record, history, config, now):
            latest = memory_store.get("user-1", TODAY)
            latest.mood_entries = [MoodEntry(mood_score=30, recorded_at=now)]
            memory_store.save(latest)
            return make_prediction(45, generated_at=now)

        _orchestrator(memory_store, predictor=racing_predictor).compute_prediction("user-1", TODAY)

        stored = memory_store.get("user-1", TODAY)
        assert [m.mood_score for m in stored.mood_entries] == [30]
        assert stored.stress_prediction.score == 45

    def test_alert_cap_across_refreshes(self, memory_store, make_prediction):
        critical = make_prediction(85, StressTier.CRITICAL, generated_at=NOW)
        orchestrator = _orchestrator(memory_store, predictor=_fixed_predictor(critical))
        for _ in range(7):
            orchestrator.compute_prediction("user-1", TODAY, force_refresh=True)
        assert len(memory_store.get("user-1", TODAY).alerts) == 5


class TestBuildOrchestrator:
    def test_catalog_attached_when_enabled(self, memory_store):
        orchestrator = build_orchestrator(AppConfig(), memory_store)
        assert isinstance(orchestrator.catalog, HttpCatalogClient)

    def test_no_catalog_when_disabled(self, memory_store):
        assert build_orchestrator(NO_CATALOG, memory_store).catalog is None
