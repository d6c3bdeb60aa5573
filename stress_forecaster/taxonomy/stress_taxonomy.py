"""
Stress taxonomy: the closed vocabularies used throughout the forecaster.

Dimensions and tiers are ``StrEnum`` members so they serialise as plain
strings (SQLite JSON columns, CLI output) while staying exhaustively
checkable in code.

  - ``StressDimension``     — the five scored input signals.
  - ``FactorName``          — dimensions plus the ``system_recovery`` marker
                              that only appears on the Default Prediction.
  - ``StressTier``          — ordered severity classification.
  - ``RecommendationType``  — kind of suggested action.
  - ``AlertType``           — kind of user-facing alert.
  - ``DataSource``          — origin of a wellbeing snapshot.
  - ``CatalogCategory``     — exercise-catalog category used for enrichment.

This module has NO imports from any other ``stress_forecaster`` package.
"""

from enum import StrEnum


class StressDimension(StrEnum):
    """Input signal scored into a 0–100 sub-score (higher = more stressed)."""

    SLEEP = "sleep"
    ACTIVITY = "activity"
    MOOD = "mood"
    CONSISTENCY = "consistency"
    HISTORICAL = "historical"


class FactorName(StrEnum):
    """Name carried by an explanatory key factor."""

    SLEEP = "sleep"
    ACTIVITY = "activity"
    MOOD = "mood"
    CONSISTENCY = "consistency"
    HISTORICAL = "historical"
    SYSTEM_RECOVERY = "system_recovery"
    """Only used by the Default Prediction."""


class StressTier(StrEnum):
    """Severity tier derived from the total score.

    Boundaries are inclusive on the lower tier: ≤30 low, ≤50 medium,
    ≤70 high, >70 critical.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_elevated(self) -> bool:
        """True for ``high`` and ``critical``."""
        return self in (StressTier.HIGH, StressTier.CRITICAL)


class RecommendationType(StrEnum):
    """Kind of suggested action."""

    EXERCISE = "exercise"
    BREATHING = "breathing"
    MINDFULNESS = "mindfulness"
    LIFESTYLE = "lifestyle"
    URGENT = "urgent"


class AlertType(StrEnum):
    """Kind of user-facing alert."""

    STRESS_ALERT = "stress_alert"
    PREVENTION_ALERT = "prevention_alert"
    IMPROVEMENT_ALERT = "improvement_alert"


class DataSource(StrEnum):
    """Origin of a wellbeing snapshot (sleep / steps)."""

    MANUAL = "manual"
    GOOGLE_FIT = "google_fit"
    APPLE_HEALTH = "apple_health"
    FITBIT = "fitbit"
    SIMULATION = "simulation"


class CatalogCategory(StrEnum):
    """Exercise-catalog category requested for recommendation enrichment."""

    BREATHING = "breathing"
    MINDFULNESS = "mindfulness"
    SOUND = "sound"
    MOVEMENT = "movement"


# Catalog category fetched for each tier's enrichment step.
TIER_CATALOG_CATEGORY: dict[StressTier, CatalogCategory] = {
    StressTier.LOW:      CatalogCategory.MINDFULNESS,
    StressTier.MEDIUM:   CatalogCategory.BREATHING,
    StressTier.HIGH:     CatalogCategory.MOVEMENT,
    StressTier.CRITICAL: CatalogCategory.BREATHING,
}
