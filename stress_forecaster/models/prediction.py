"""
Stress prediction models.

``StressPrediction`` is the aggregator's output: a bounded total score, its
severity tier, up to three explanatory factors, a confidence value and the
per-dimension breakdown that produced the total.  It is frozen — once
computed and persisted it is only ever replaced wholesale.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stress_forecaster.taxonomy.stress_taxonomy import (
    FactorName,
    StressDimension,
    StressTier,
)
from stress_forecaster.utils.time_utils import utcnow


class StressBreakdown(BaseModel):
    """Per-dimension sub-scores (0–100, higher = more stressed).

    A dimension is ``None`` only when it was not available to the aggregator;
    the standard scorers always produce a value.
    """

    model_config = ConfigDict(frozen=True)

    sleep: Optional[int] = Field(default=None, ge=0, le=100)
    activity: Optional[int] = Field(default=None, ge=0, le=100)
    mood: Optional[int] = Field(default=None, ge=0, le=100)
    consistency: Optional[int] = Field(default=None, ge=0, le=100)
    historical: Optional[int] = Field(default=None, ge=0, le=100)

    def get(self, dimension: StressDimension) -> Optional[int]:
        return getattr(self, str(dimension))

    def present(self) -> dict[StressDimension, int]:
        """Mapping of available dimensions to their sub-scores, in dimension order."""
        return {
            dim: score
            for dim in StressDimension
            if (score := self.get(dim)) is not None
        }


class StressFactor(BaseModel):
    """One explanatory key factor.

    Attributes:
        factor:      Dimension (or ``system_recovery`` on the default prediction).
        impact:      Divergence from the total, capped at 30.
        description: Canned human-readable phrase.
    """

    model_config = ConfigDict(frozen=True)

    factor: FactorName
    impact: int = Field(ge=0, le=30)
    description: str


class StressPrediction(BaseModel):
    """Daily stress estimate for one user.

    Attributes:
        score:         Total score, integer in [0, 100].
        level:         Severity tier derived from ``score``.
        factors:       Up to 3 key factors, highest impact first.
        confidence:    Data-availability confidence in [0.30, 0.95].
        model_version: ``ScoringConfig.model_version`` used.
        generated_at:  UTC generation time (drives the staleness window).
        breakdown:     Sub-scores behind the total.
        note:          Set only on the Default Prediction.
    """

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    level: StressTier
    factors: list[StressFactor] = Field(default_factory=list, max_length=3)
    confidence: float = Field(ge=0.30, le=0.95)
    model_version: str
    generated_at: datetime = Field(default_factory=utcnow)
    breakdown: StressBreakdown = Field(default_factory=StressBreakdown)
    note: Optional[str] = None

    @field_validator("model_version")
    @classmethod
    def validate_model_version(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("model_version must be non-empty.")
        return v

    @model_validator(mode="after")
    def validate_factors_in_breakdown(self) -> "StressPrediction":
        present = {str(dim) for dim in self.breakdown.present()}
        for f in self.factors:
            if f.factor == FactorName.SYSTEM_RECOVERY:
                continue
            if str(f.factor) not in present:
                raise ValueError(
                    f"Factor '{f.factor}' does not appear in the prediction breakdown."
                )
        return self

    @property
    def is_default(self) -> bool:
        """True for the canned Default Prediction."""
        return any(f.factor == FactorName.SYSTEM_RECOVERY for f in self.factors)
