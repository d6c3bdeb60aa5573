"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``STRESS_FORECASTER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

All pipeline stages, services and CLI commands receive an ``AppConfig``
instance — never raw dicts or individual env var lookups scattered through
the codebase.  The scoring model's weights, bucket boundaries and defaults
live in ``ScoringConfig`` and are versioned together with ``model_version``
so any behaviour change is auditable from the stored predictions.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/stress_forecaster.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ScoringConfig(BaseModel):
    """Weights, thresholds and defaults of the rule-based stress model.

    Bucket lists are ``(threshold, sub_score)`` pairs evaluated in order;
    the first threshold the input meets or exceeds wins, otherwise the
    ``*_floor_score`` applies.
    """

    model_config = ConfigDict(frozen=True)

    model_version: str = "1.2"

    weights: dict[str, float] = {
        "sleep":       0.25,
        "activity":    0.20,
        "mood":        0.30,
        "consistency": 0.15,
        "historical":  0.10,
    }

    # Severity tiers (upper bounds are inclusive on the lower tier)
    low_max: int = 30
    medium_max: int = 50
    high_max: int = 70

    # Missing-signal defaults
    sleep_missing_score: int = 70
    activity_missing_score: int = 60
    neutral_score: int = 50

    # Sleep: optimal band, oversleep, then descending buckets below the band
    sleep_optimal_min: float = 7.0
    sleep_optimal_max: float = 9.0
    sleep_optimal_score: int = 20
    sleep_oversleep_score: int = 50
    sleep_buckets: list[tuple[float, int]] = [(6.0, 40), (5.0, 60)]
    sleep_floor_score: int = 80

    step_buckets: list[tuple[float, int]] = [(8000, 20), (5000, 40), (3000, 60)]
    step_floor_score: int = 80

    mood_buckets: list[tuple[float, int]] = [(80, 20), (60, 40), (40, 60), (20, 80)]
    mood_floor_score: int = 90

    # History windows
    mood_window: int = 3
    consistency_min_history: int = 3
    consistency_window: int = 7
    historical_window: int = 5

    # Key-factor selection
    factor_threshold: float = 10.0
    factor_impact_cap: int = 30
    fallback_factor_impact: int = 15
    max_factors: int = 3

    # Confidence
    confidence_base: float = 0.5
    confidence_sleep_bonus: float = 0.2
    confidence_steps_bonus: float = 0.15
    confidence_mood_bonus: float = 0.15
    confidence_history_short: int = 3
    confidence_history_short_bonus: float = 0.1
    confidence_history_long: int = 7
    confidence_history_long_bonus: float = 0.1
    confidence_min: float = 0.30
    confidence_max: float = 0.95

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        valid = {"sleep", "activity", "mood", "consistency", "historical"}
        unknown = set(v) - valid
        if unknown:
            raise ValueError(
                f"Unknown scoring dimensions {sorted(unknown)}. Must be a subset of {sorted(valid)}."
            )
        if any(w < 0 for w in v.values()):
            raise ValueError("Scoring weights must be non-negative.")
        total = sum(v.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.4f}.")
        return v

    @model_validator(mode="after")
    def validate_tier_bounds(self) -> "ScoringConfig":
        if not 0 <= self.low_max < self.medium_max < self.high_max < 100:
            raise ValueError(
                "Tier bounds must satisfy 0 <= low_max < medium_max < high_max < 100, "
                f"got {self.low_max}/{self.medium_max}/{self.high_max}."
            )
        if not 0.0 <= self.confidence_min <= self.confidence_max <= 1.0:
            raise ValueError("Confidence bounds must satisfy 0 <= min <= max <= 1.")
        return self


class PredictionConfig(BaseModel):
    """Orchestrator caching and history settings."""

    model_config = ConfigDict(frozen=True)

    staleness_hours: float = 6.0
    history_days: int = 14

    @field_validator("staleness_hours")
    @classmethod
    def validate_staleness(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"staleness_hours must be positive, got {v}.")
        return v


class RecommendationConfig(BaseModel):
    """Recommendation selector settings."""

    model_config = ConfigDict(frozen=True)

    max_recommendations: int = 5
    preventive_min_history: int = 3
    preventive_window: int = 5
    preventive_min_elevated_days: int = 2
    # Carry completion state across regeneration by matching (type, title).
    preserve_completed: bool = False


class AlertConfig(BaseModel):
    """Alert policy rate-limit settings."""

    model_config = ConfigDict(frozen=True)

    max_alerts_per_record: int = 5
    persistent_lookback_days: int = 3
    persistent_fetch_limit: int = 5
    persistent_min_days: int = 2


class CatalogConfig(BaseModel):
    """Exercise catalog collaborator (read-only HTTP service)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    base_url: str = "http://localhost:3004"
    timeout_seconds: float = 2.0
    fetch_limit: int = 2

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {v}.")
        return v


class RetriggerConfig(BaseModel):
    """Rate limits for re-prediction after new signal data is written."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    delay_seconds: float = 2.0
    min_interval_seconds: float = 300.0
    min_prediction_age_minutes: float = 30.0
    max_workers: int = 2


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/stress_forecaster.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    All stages, services and CLI commands receive an ``AppConfig`` instance.
    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    scoring: ScoringConfig = ScoringConfig()
    prediction: PredictionConfig = PredictionConfig()
    recommendations: RecommendationConfig = RecommendationConfig()
    alerts: AlertConfig = AlertConfig()
    catalog: CatalogConfig = CatalogConfig()
    retrigger: RetriggerConfig = RetriggerConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    # Also merge local.toml if present (gitignored local overrides)
    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply STRESS_FORECASTER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply STRESS_FORECASTER_* env vars to the raw config dict.

    Supported overrides:
      STRESS_FORECASTER_DB_PATH      → raw["database"]["db_path"]
      STRESS_FORECASTER_LOG_LEVEL    → raw["logging"]["level"]
      STRESS_FORECASTER_CATALOG_URL  → raw["catalog"]["base_url"]
      STRESS_FORECASTER_DEBUG        → raw["debug"]
    """
    if db_path := os.environ.get("STRESS_FORECASTER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("STRESS_FORECASTER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if catalog_url := os.environ.get("STRESS_FORECASTER_CATALOG_URL"):
        raw.setdefault("catalog", {})["base_url"] = catalog_url

    if debug := os.environ.get("STRESS_FORECASTER_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    # Flatten top-level keys that may be nested under [project]
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        prediction=PredictionConfig(**raw.get("prediction", {})),
        recommendations=RecommendationConfig(**raw.get("recommendations", {})),
        alerts=AlertConfig(**raw.get("alerts", {})),
        catalog=CatalogConfig(**raw.get("catalog", {})),
        retrigger=RetriggerConfig(**raw.get("retrigger", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
