"""
ScheduledPredictionStage — refresh predictions for every known user.

Intended to be run by cron three times a day::

    0 8,14,20 * * *  cd /srv/stress-forecaster && .venv/bin/stress-forecaster run-scheduled-predictions

Each user gets ``compute_prediction(force_refresh=False)``, so a user whose
prediction is still inside the staleness window is a cheap cache hit.
One user's failure never stops the sweep; the run ends ``partial`` and the
failing user IDs are listed in ``error_message``.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from stress_forecaster.config import AppConfig
from stress_forecaster.models.meta import RunMetadata
from stress_forecaster.pipeline.base import PipelineStage
from stress_forecaster.pipeline.orchestrator import PredictionOrchestrator, build_orchestrator
from stress_forecaster.utils.logging import log_context

logger = logging.getLogger(__name__)


class ScheduledPredictionStage(PipelineStage):
    """Audited sweep over all users with a daily record."""

    stage_name = "scheduled_predict"

    def __init__(
        self,
        config: AppConfig,
        store: Any,
        orchestrator: Optional[PredictionOrchestrator] = None,
        db_path: str | None = None,
    ) -> None:
        super().__init__(config, db_path)
        self.store = store
        self.orchestrator = orchestrator or build_orchestrator(config, store)

    def _execute(self, run: RunMetadata, day: Optional[date] = None, **kwargs) -> int:
        user_ids = self.store.list_user_ids()
        logger.info("Scheduled sweep over %d user(s).", len(user_ids))

        processed = 0
        failed: list[str] = []
        for user_id in user_ids:
            try:
                result = self.orchestrator.compute_prediction(user_id, day, force_refresh=False)
            except Exception as exc:
                logger.error("Scheduled prediction failed: %s", exc, extra=log_context(user_id, day))
                failed.append(user_id)
                continue
            if result.warning:
                logger.warning("Degraded prediction: %s", result.warning, extra=log_context(user_id, day))
            processed += 1

        if failed:
            run.status = "partial"
            run.error_message = f"{len(failed)} user(s) failed: {', '.join(failed)}"
        return processed
