"""
Recommendation selector: map a prediction (tier + key factors + short
history) to a deduplicated, priority-ordered list of suggested actions.

Rules (all applicable rules fire; results are merged)
------------------------------------------------------
1. Tier baseline
     low      → mindfulness "Keep your balance"               (p2)
     medium   → breathing   "Balancing breath"                (p3)
     high     → exercise    "Urgent relaxation exercise"      (p4)
                lifestyle   "Active breaks"                   (p3)
     critical → urgent      "Immediate attention needed"      (p5)
                breathing   "Emergency breathing"             (p5)
2. Factor-based, one per key factor among sleep / activity / mood
     sleep    → lifestyle   "Sleep hygiene"                   (p3)
     activity → exercise    "Moderate physical activity"      (p3)
     mood     → mindfulness "Emotional regulation"            (p4)
3. Preventive: history ≥ 3 records and ≥ 2 of the last 5 tiers high or
   critical → lifestyle "Stress pattern detected" (p4).
4. Catalog enrichment (best-effort): one catalog item for the tier's
   category (low → mindfulness, medium → breathing, high → movement,
   critical → breathing) replaces the title/duration of the first
   exercise/breathing recommendation of the tier baseline.  Any failure is
   logged and ignored.

Post-processing (unconditional)
-------------------------------
Deduplicate by (type, title) keeping the first occurrence, sort by priority
descending (stable), keep at most 5.

Failure policy
--------------
``generate_recommendations()`` never raises; on any internal error it
returns ``fallback_recommendations()`` — a single "Mindful breathing"
breathing suggestion (p3).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

from stress_forecaster.clients.exercise_catalog import CatalogClient
from stress_forecaster.config import RecommendationConfig
from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.models.record import Recommendation
from stress_forecaster.taxonomy.stress_taxonomy import (
    TIER_CATALOG_CATEGORY,
    FactorName,
    RecommendationType,
    StressTier,
)

logger = logging.getLogger(__name__)

_DEFAULT_RECOMMENDATIONS = RecommendationConfig()


@dataclass(frozen=True)
class _Template:
    """Immutable recommendation blueprint; ``build()`` mints a fresh rec_id."""

    type:             RecommendationType
    title:            str
    description:      str
    priority:         int
    duration_minutes: Optional[int]

    def build(self) -> Recommendation:
        return Recommendation(
            type=self.type,
            title=self.title,
            description=self.description,
            priority=self.priority,
            duration_minutes=self.duration_minutes,
        )


_TIER_TEMPLATES: dict[StressTier, tuple[_Template, ...]] = {
    StressTier.LOW: (
        _Template(
            RecommendationType.MINDFULNESS,
            "Keep your balance",
            "Continue your mindfulness practice to maintain your current wellbeing.",
            2, 10,
        ),
    ),
    StressTier.MEDIUM: (
        _Template(
            RecommendationType.BREATHING,
            "Balancing breath",
            "Practise conscious breathing to manage moderate stress.",
            3, 5,
        ),
    ),
    StressTier.HIGH: (
        _Template(
            RecommendationType.EXERCISE,
            "Urgent relaxation exercise",
            "Do this exercise to bring elevated stress levels down.",
            4, 15,
        ),
        _Template(
            RecommendationType.LIFESTYLE,
            "Active breaks",
            "Consider taking short breaks every hour during your day.",
            3, None,
        ),
    ),
    StressTier.CRITICAL: (
        _Template(
            RecommendationType.URGENT,
            "Immediate attention needed",
            "Critical stress levels detected. Practise grounding techniques right away.",
            5, 20,
        ),
        _Template(
            RecommendationType.BREATHING,
            "Emergency breathing",
            "Use the 4-7-8 technique to calm your nervous system quickly.",
            5, 5,
        ),
    ),
}

_FACTOR_TEMPLATES: dict[FactorName, _Template] = {
    FactorName.SLEEP: _Template(
        RecommendationType.LIFESTYLE,
        "Sleep hygiene",
        "Improve your sleep routine with these recommended practices.",
        3, None,
    ),
    FactorName.ACTIVITY: _Template(
        RecommendationType.EXERCISE,
        "Moderate physical activity",
        "Add short walks during the day to increase your activity.",
        3, 10,
    ),
    FactorName.MOOD: _Template(
        RecommendationType.MINDFULNESS,
        "Emotional regulation",
        "Practise observing your emotions without judgement.",
        4, 8,
    ),
}

_PREVENTIVE_TEMPLATE = _Template(
    RecommendationType.LIFESTYLE,
    "Stress pattern detected",
    "You have had several high-stress days. Consider adjusting your weekly routine.",
    4, None,
)

_FALLBACK_TEMPLATE = _Template(
    RecommendationType.BREATHING,
    "Mindful breathing",
    "Take 5 minutes to focus on your breathing.",
    3, 5,
)

_ENRICHABLE_TYPES = frozenset({RecommendationType.EXERCISE, RecommendationType.BREATHING})


# ── Rules ─────────────────────────────────────────────────────────────────────

def tier_recommendations(tier: StressTier) -> list[Recommendation]:
    """Baseline suggestions for a severity tier."""
    return [t.build() for t in _TIER_TEMPLATES.get(tier, ())]


def factor_recommendations(factors: Sequence[Any]) -> list[Recommendation]:
    """One targeted suggestion per sleep / activity / mood key factor."""
    recs: list[Recommendation] = []
    for f in factors:
        template = _FACTOR_TEMPLATES.get(getattr(f, "factor", None))
        if template is not None:
            recs.append(template.build())
    return recs


def preventive_recommendations(
    history: Sequence[Any],
    config: RecommendationConfig = _DEFAULT_RECOMMENDATIONS,
) -> list[Recommendation]:
    """"Pattern detected" suggestion when recent days were repeatedly elevated."""
    if len(history) < config.preventive_min_history:
        return []

    elevated = 0
    for record in history[-config.preventive_window:]:
        prediction = getattr(record, "stress_prediction", None)
        level = getattr(prediction, "level", None)
        if level in (StressTier.HIGH, StressTier.CRITICAL):
            elevated += 1

    if elevated >= config.preventive_min_elevated_days:
        return [_PREVENTIVE_TEMPLATE.build()]
    return []


def enrich_from_catalog(
    recommendations: list[Recommendation],
    tier: StressTier,
    catalog: Optional[CatalogClient],
    limit: int = 2,
) -> list[Recommendation]:
    """Attach one catalog exercise to the first exercise/breathing recommendation.

    Best-effort: any catalog failure is logged and the input is returned
    unchanged.
    """
    if catalog is None:
        return recommendations

    category = TIER_CATALOG_CATEGORY.get(tier)
    if category is None:
        return recommendations

    try:
        items = catalog.fetch_items(str(category), limit)
    except Exception as exc:
        logger.warning("Catalog enrichment skipped (category=%s): %s", category, exc)
        return recommendations

    if not items:
        return recommendations

    item = items[0]
    enriched = list(recommendations)
    for idx, rec in enumerate(enriched):
        if rec.type in _ENRICHABLE_TYPES:
            update: dict[str, Any] = {"exercise_id": item.exercise_id, "title": item.title}
            if item.duration_seconds:
                update["duration_minutes"] = math.ceil(item.duration_seconds / 60)
            enriched[idx] = rec.model_copy(update=update)
            logger.debug("Enriched '%s' with catalog item %s", rec.title, item.exercise_id)
            break
    return enriched


def deduplicate_and_sort(
    recommendations: Sequence[Recommendation],
    max_recommendations: int = 5,
) -> list[Recommendation]:
    """Drop repeated (type, title) pairs, sort by priority desc, cap the list."""
    seen: set[tuple[str, str]] = set()
    unique: list[Recommendation] = []
    for rec in recommendations:
        if rec.dedup_key in seen:
            continue
        seen.add(rec.dedup_key)
        unique.append(rec)

    unique.sort(key=lambda r: r.priority, reverse=True)
    return unique[:max_recommendations]


def carry_completion_state(
    recommendations: Sequence[Recommendation],
    previous: Sequence[Recommendation],
) -> list[Recommendation]:
    """Copy completion flags from ``previous`` onto matching (type, title) entries."""
    done = {
        rec.dedup_key: rec for rec in previous if rec.completed
    }
    carried: list[Recommendation] = []
    for rec in recommendations:
        prior = done.get(rec.dedup_key)
        if prior is not None:
            rec = rec.model_copy(
                update={"completed": True, "completed_at": prior.completed_at}
            )
        carried.append(rec)
    return carried


def fallback_recommendations() -> list[Recommendation]:
    """The single generic suggestion used when selection fails."""
    return [_FALLBACK_TEMPLATE.build()]


# ── Entry point ───────────────────────────────────────────────────────────────

def generate_recommendations(
    prediction: StressPrediction,
    history: Optional[Sequence[Any]] = None,
    catalog: Optional[CatalogClient] = None,
    config: RecommendationConfig = _DEFAULT_RECOMMENDATIONS,
    catalog_limit: int = 2,
    previous: Optional[Sequence[Recommendation]] = None,
) -> list[Recommendation]:
    """Build the recommendation list for one prediction.  Never raises.

    Args:
        prediction:    The (possibly default) stress prediction.
        history:       Prior daily records, oldest first.
        catalog:       Optional exercise catalog for enrichment.
        config:        Selector limits and preventive thresholds.
        catalog_limit: Items requested from the catalog.
        previous:      Recommendations being replaced; consulted only when
                       ``config.preserve_completed`` is set.

    Returns:
        At most ``config.max_recommendations`` recommendations, unique by
        (type, title), highest priority first.
    """
    try:
        history_list = list(history or [])
        tier = StressTier(prediction.level)

        recs = enrich_from_catalog(tier_recommendations(tier), tier, catalog, catalog_limit)
        recs += factor_recommendations(prediction.factors)
        recs += preventive_recommendations(history_list, config)

        if config.preserve_completed and previous:
            recs = carry_completion_state(recs, previous)
    except Exception as exc:
        logger.error("Recommendation generation failed, using fallback: %s", exc)
        recs = fallback_recommendations()

    return deduplicate_and_sort(recs, config.max_recommendations)
