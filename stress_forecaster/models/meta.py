"""
Run metadata — the audit log for scheduled prediction sweeps.

``RunMetadata`` records every ``PipelineStage`` execution with a complete
``config_snapshot`` (full AppConfig as a dict) so a sweep can be reproduced
by restoring that config.  The scoring model version is part of that
snapshot.

``RunMetadata`` is NOT frozen — its ``status``, ``rows_processed``,
``error_message`` and ``finished_at`` fields are updated as the stage runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"scheduled_predict"})
VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed"})


class RunMetadata(BaseModel):
    """Pipeline execution audit record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        pipeline_stage: Which stage produced this run record.
        status: Current execution status.
        model_version: Scoring model version in effect.
        config_snapshot: Full ``AppConfig.model_dump()`` at run start time.
        rows_processed: Count of users processed (updated during run).
        error_message: Error description if ``status`` is not ``success``.
        started_at: UTC datetime when the run began.
        finished_at: UTC datetime when the run completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    pipeline_stage: str
    status: str = "started"
    model_version: Optional[str] = None
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v
