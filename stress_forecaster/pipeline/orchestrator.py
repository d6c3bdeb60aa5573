"""
Prediction orchestrator — the per-request entry point.

``PredictionOrchestrator.compute_prediction(user_id, day, force_refresh)``
runs a fixed sequence in which every step has a fallback:

  Step 1 — Load:      Load the daily record for (user, day), or start a new one.
  Step 2 — Cache:     Unless ``force_refresh``, a stored prediction younger
                      than ``staleness_hours`` is returned as-is together
                      with its recommendations.  Nothing is recomputed or
                      written.
  Step 3 — History:   Prior ``history_days`` of records, oldest first.
                      A fetch failure yields an empty history.
  Step 4 — Predict:   Aggregator; any failure yields the Default Prediction.
  Step 5 — Recommend: Selector; any failure yields the fallback recommendation.
  Step 6 — Persist:   Re-read the stored record, attach prediction and
                      recommendations, save.  Failures and version conflicts
                      are logged, not raised.
  Step 7 — Alerts:    Alert policy against the persisted state (never raises).
  Step 8 — Return:    Always a ``PredictionResult``.  A degraded result
                      carries a non-empty ``warning``.

Any unexpected error outside those guarded steps is caught at the top level
and converted to the Default Prediction, the fallback recommendation and a
warning.  ``compute_prediction`` therefore never raises.

State per (user, day)
---------------------
    NO_PREDICTION → FRESH (age < staleness) → STALE (age ≥ staleness) → FRESH

The cache check is also the guard that keeps re-prediction triggers from
looping: a trigger that lands inside the staleness window is a cache hit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from stress_forecaster.alerts.policy import apply_alert_policy
from stress_forecaster.clients.exercise_catalog import CatalogClient, HttpCatalogClient
from stress_forecaster.config import AppConfig
from stress_forecaster.errors import RecordConflictError
from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.models.record import DailyRecord, Recommendation
from stress_forecaster.recommendations.selector import (
    fallback_recommendations,
    generate_recommendations,
)
from stress_forecaster.scoring.aggregator import default_prediction, predict_stress
from stress_forecaster.utils.logging import log_context
from stress_forecaster.utils.time_utils import age_hours, days_before, utcnow

logger = logging.getLogger(__name__)

DEGRADED_WARNING = "Prediction generated with limited quality; using fallback values."
FAILURE_WARNING = "Using fallback prediction due to an internal error."

Predictor = Callable[..., StressPrediction]


# ── Result type ───────────────────────────────────────────────────────────────

@dataclass
class PredictionResult:
    """What ``compute_prediction`` returns.

    Attributes:
        prediction:      The (possibly default) prediction.
        recommendations: Recommendations for that prediction.
        warning:         Set when the result is degraded.
        cached:          True when served from the staleness window.
    """

    prediction: StressPrediction
    recommendations: list[Recommendation] = field(default_factory=list)
    warning: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prediction": self.prediction.model_dump(mode="json"),
            "recommendations": [r.model_dump(mode="json") for r in self.recommendations],
            "cached": self.cached,
        }
        if self.warning:
            payload["warning"] = self.warning
        return payload


# ── Orchestrator ──────────────────────────────────────────────────────────────

class PredictionOrchestrator:
    """Coordinates scoring, recommendation, persistence and alerts.

    Args:
        store:     ``RecordStore`` implementation.
        catalog:   Optional exercise catalog for recommendation enrichment.
        config:    Application configuration.
        predictor: Scoring entry point (defaults to ``predict_stress``).
        clock:     Returns the current UTC datetime.
    """

    def __init__(
        self,
        store: Any,
        catalog: Optional[CatalogClient] = None,
        config: Optional[AppConfig] = None,
        predictor: Predictor = predict_stress,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.config = config or AppConfig()
        self._predictor = predictor
        self._clock = clock

    def compute_prediction(
        self,
        user_id: str,
        day: Optional[date] = None,
        force_refresh: bool = False,
    ) -> PredictionResult:
        """Produce the stress prediction for ``user_id`` on ``day``.  Never raises.

        Args:
            user_id:       Owner.
            day:           Calendar day (defaults to today, UTC).
            force_refresh: Skip the staleness-window cache.
        """
        now = self._clock()
        day = day or now.date()

        try:
            record = self.store.load_or_create(user_id, day)

            if not force_refresh:
                cached = self._cached_result(record, now)
                if cached is not None:
                    logger.debug("Cache hit", extra=log_context(user_id, day))
                    return cached

            history = self._load_history(user_id, day)
            prediction = self._predict(record, history, now)
            recommendations = self._recommend(prediction, history, record.recommendations)

            self._persist(record, prediction, recommendations)
            apply_alert_policy(self.store, record, prediction, self.config.alerts)

            warning = DEGRADED_WARNING if prediction.is_default else None
            logger.info(
                "Prediction | score=%d level=%s confidence=%.2f",
                prediction.score, prediction.level, prediction.confidence,
                extra=log_context(user_id, day),
            )
            return PredictionResult(prediction, recommendations, warning)

        except Exception as exc:
            logger.exception("Prediction failed: %s", exc, extra=log_context(user_id, day))
            return PredictionResult(
                default_prediction(self.config.scoring, now),
                fallback_recommendations(),
                FAILURE_WARNING,
            )

    # ── Steps ────────────────────────────────────────────────────────────────

    def _cached_result(self, record: DailyRecord, now: datetime) -> Optional[PredictionResult]:
        prediction = record.stress_prediction
        if prediction is None:
            return None
        age = age_hours(prediction.generated_at, now)
        if age is None or age >= self.config.prediction.staleness_hours:
            return None
        warning = DEGRADED_WARNING if prediction.is_default else None
        return PredictionResult(prediction, list(record.recommendations), warning=warning, cached=True)

    def _load_history(self, user_id: str, day: date) -> list[DailyRecord]:
        since = days_before(day, self.config.prediction.history_days)
        try:
            return list(self.store.fetch_history(user_id, since, day))
        except Exception as exc:
            logger.warning(
                "History fetch failed; using empty history: %s", exc,
                extra=log_context(user_id, day),
            )
            return []

    def _predict(
        self,
        record: DailyRecord,
        history: Sequence[DailyRecord],
        now: datetime,
    ) -> StressPrediction:
        try:
            return self._predictor(record, history, self.config.scoring, now)
        except Exception as exc:
            logger.error(
                "Predictor raised, using default prediction: %s", exc,
                extra=log_context(record.user_id, record.day),
            )
            return default_prediction(self.config.scoring, now)

    def _recommend(
        self,
        prediction: StressPrediction,
        history: Sequence[DailyRecord],
        previous: Sequence[Recommendation],
    ) -> list[Recommendation]:
        try:
            return generate_recommendations(
                prediction,
                history,
                catalog=self.catalog,
                config=self.config.recommendations,
                catalog_limit=self.config.catalog.fetch_limit,
                previous=previous,
            )
        except Exception as exc:
            logger.error("Recommendation selector raised, using fallback: %s", exc)
            return fallback_recommendations()

    def _persist(
        self,
        record: DailyRecord,
        prediction: StressPrediction,
        recommendations: list[Recommendation],
    ) -> bool:
        """Attach results to the latest stored copy and save.  Returns success."""
        try:
            latest = self.store.get(record.user_id, record.day) or record
            latest.stress_prediction = prediction
            latest.recommendations = list(recommendations)
            self.store.save(latest)
            return True
        except RecordConflictError as exc:
            logger.warning(
                "Prediction not saved (concurrent update dropped): %s", exc,
                extra=log_context(record.user_id, record.day),
            )
        except Exception as exc:
            logger.error(
                "Failed to persist prediction: %s", exc,
                extra=log_context(record.user_id, record.day),
            )
        return False


def build_orchestrator(config: AppConfig, store: Any) -> PredictionOrchestrator:
    """Orchestrator wired with the HTTP catalog client when it is enabled."""
    catalog: Optional[CatalogClient] = None
    if config.catalog.enabled:
        catalog = HttpCatalogClient(
            config.catalog.base_url, timeout_seconds=config.catalog.timeout_seconds
        )
    return PredictionOrchestrator(store, catalog=catalog, config=config)
