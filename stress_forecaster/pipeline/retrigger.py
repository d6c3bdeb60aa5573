"""
Re-prediction trigger.

After new signal data is written (a mood entry, a wellbeing sync) the
prediction for that day may be worth refreshing.  ``RepredictionTrigger``
does this explicitly instead of scheduling blind delayed self-calls:

  - ``request()`` never blocks the write path; it only enqueues work on a
    bounded ``ThreadPoolExecutor``.
  - Requests for the same (user, day) inside ``min_interval_seconds`` of
    the last accepted one are dropped.  Acceptance times older than the
    interval are evicted on every request, so the table only holds keys
    that can still rate-limit.
  - The task waits ``delay_seconds`` (so bursts of writes coalesce), then
    re-checks its precondition against the stored record: no prediction
    yet, or one at least ``min_prediction_age_minutes`` old.  Only then does
    it call the orchestrator with ``force_refresh=True``.
  - Failures are logged; nothing propagates to the requester.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime
from typing import Any, Optional

from stress_forecaster.config import RetriggerConfig
from stress_forecaster.utils.logging import log_context
from stress_forecaster.utils.time_utils import age_hours, utcnow

logger = logging.getLogger(__name__)


class RepredictionTrigger:
    """Rate-limited, fire-and-forget re-prediction.

    Args:
        orchestrator: Object exposing ``compute_prediction(user_id, day, force_refresh)``.
        store:        ``RecordStore`` used for the precondition check.
        config:       Delay, rate-limit and pool settings.
        clock:        Returns the current UTC datetime.
        sleep:        Blocking sleep used for the coalescing delay.
    """

    def __init__(
        self,
        orchestrator: Any,
        store: Any,
        config: Optional[RetriggerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.config = config or RetriggerConfig()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_accepted: dict[tuple[str, date], datetime] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="repredict",
        )

    def request(self, user_id: str, day: Optional[date] = None) -> Optional[Future]:
        """Enqueue a re-prediction; returns the task future, or ``None`` if dropped."""
        if not self.config.enabled:
            return None

        now = self._clock()
        day = day or now.date()
        key = (user_id, day)

        with self._lock:
            self._evict_expired(now)
            if key in self._last_accepted:
                logger.debug("Re-prediction rate-limited", extra=log_context(user_id, day))
                return None
            self._last_accepted[key] = now

        try:
            return self._executor.submit(self._run, user_id, day)
        except RuntimeError as exc:
            # Executor already shut down
            logger.warning(
                "Re-prediction not scheduled: %s", exc, extra=log_context(user_id, day),
            )
            return None

    def _evict_expired(self, now: datetime) -> None:
        """Drop acceptance times outside the rate-limit window.  Caller holds the lock."""
        interval = self.config.min_interval_seconds
        expired = [
            key for key, accepted_at in self._last_accepted.items()
            if (now - accepted_at).total_seconds() >= interval
        ]
        for key in expired:
            del self._last_accepted[key]

    def is_due(self, user_id: str, day: date) -> bool:
        """True when the stored record has no prediction or only an old one."""
        record = self.store.get(user_id, day)
        prediction = getattr(record, "stress_prediction", None)
        if prediction is None:
            return True
        age = age_hours(prediction.generated_at, self._clock())
        return age is None or age * 60.0 >= self.config.min_prediction_age_minutes

    def _run(self, user_id: str, day: date) -> bool:
        try:
            if self.config.delay_seconds > 0:
                self._sleep(self.config.delay_seconds)
            if not self.is_due(user_id, day):
                logger.debug(
                    "Re-prediction skipped, prediction is recent",
                    extra=log_context(user_id, day),
                )
                return False
            result = self.orchestrator.compute_prediction(user_id, day, force_refresh=True)
            logger.info(
                "Re-prediction done | score=%d", result.prediction.score,
                extra=log_context(user_id, day),
            )
            return True
        except Exception as exc:
            logger.error("Re-prediction failed: %s", exc, extra=log_context(user_id, day))
            return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
