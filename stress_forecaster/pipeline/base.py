"""
Abstract base class for audited pipeline stages.

Contract:
  1. ``AppConfig`` is received at construction.
  2. ``run(**kwargs)`` is the only public entry point.
  3. ``run()`` opens a ``RunMetadata`` record, calls ``_execute()`` and
     persists the record with its final status.
  4. ``_execute()`` holds the stage-specific work and returns the number of
     items processed.

A stage may set ``run.status = "partial"`` from inside ``_execute()`` when
some items failed but the run as a whole completed; ``run()`` keeps that
status instead of overwriting it with ``success``.

Usage::

    class SweepStage(PipelineStage):
        stage_name = "scheduled_predict"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            return 42

    run = SweepStage(config=app_config).run()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import uuid4

from stress_forecaster.config import AppConfig
from stress_forecaster.models.meta import RunMetadata
from stress_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Abstract base for audited stages.

    Attributes:
        stage_name: Identifier; one of ``VALID_PIPELINE_STAGES``.
        config:     Application configuration for this run.
        db_path:    SQLite path for the audit row (defaults to config).
    """

    stage_name: str

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path

    def run(self, **kwargs) -> RunMetadata:
        """Execute the stage and return its finalized ``RunMetadata``.

        Raises:
            Exception: Whatever ``_execute()`` raised, after the run was
                recorded as ``failed``.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            model_version=self.config.scoring.model_version,
            config_snapshot=self.config.model_dump(mode="json"),
            started_at=utcnow(),
        )
        logger.info("Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug)

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s", self.stage_name, exc, run.run_slug
            )
            self._persist_run(run)
            raise

        if run.status == "started":
            run.status = "success"
        run.rows_processed = rows
        run.finished_at = utcnow()
        logger.info(
            "Stage [%s] %s | rows=%d | run_slug=%s",
            self.stage_name, run.status, rows, run.run_slug,
        )
        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Stage-specific work; returns the count of items processed."""
        ...

    def _persist_run(self, run: RunMetadata) -> None:
        """Write the audit row.  Logged, never raised: it must not mask a stage error."""
        try:
            from stress_forecaster.db.connection import connection_for
            from stress_forecaster.db.repositories.run_repo import RunMetadataRepository

            with connection_for(self.config.database, self.db_path) as conn:
                repo = RunMetadataRepository(conn)
                if run.run_id is None:
                    run.run_id = repo.insert_run(run)
                else:
                    repo.update_run(run)
        except Exception as exc:
            logger.error(
                "Failed to persist RunMetadata for run_slug=%s: %s", run.run_slug, exc
            )
