"""
Alert policy.

Runs after a fresh prediction has been persisted.

Rules
-----
  critical → one "Critical stress level" alert.
  high     → look back ``persistent_lookback_days`` days (at most
             ``persistent_fetch_limit`` records) for prior days whose stored
             tier was ``high``; ``persistent_min_days`` or more → one
             "Persistent elevated stress" alert.
  other    → nothing.

Alerts are appended to the *latest persisted* copy of the record, never
replacing existing ones, and at most ``max_alerts_per_record`` are kept.
Anything beyond the cap is dropped silently.

``decide_alerts()`` is pure.  ``apply_alert_policy()`` performs the I/O and
never raises: lookup failures and persistence conflicts are logged and
swallowed.
"""

from __future__ import annotations

import logging
from typing import Any

from stress_forecaster.config import AlertConfig
from stress_forecaster.models.prediction import StressPrediction
from stress_forecaster.models.record import Alert, DailyRecord
from stress_forecaster.taxonomy.stress_taxonomy import AlertType, StressTier
from stress_forecaster.utils.logging import log_context
from stress_forecaster.utils.time_utils import days_before

logger = logging.getLogger(__name__)

_DEFAULT_ALERTS = AlertConfig()

CRITICAL_ALERT_TITLE = "Critical stress level"
CRITICAL_ALERT_MESSAGE = (
    "We detected very high stress levels. We recommend practising relaxation exercises."
)
PERSISTENT_ALERT_TITLE = "Persistent elevated stress"
PERSISTENT_ALERT_MESSAGE = (
    "You have had several days of elevated stress. Consider adjusting your routine."
)


def decide_alerts(
    prediction: StressPrediction,
    prior_high_days: int = 0,
    config: AlertConfig = _DEFAULT_ALERTS,
) -> list[Alert]:
    """Alerts warranted by ``prediction`` alone (cap not applied).

    Args:
        prediction:      The freshly computed prediction.
        prior_high_days: Prior ``high`` days found in the lookback window.
        config:          Alert thresholds.
    """
    if prediction.level == StressTier.CRITICAL:
        return [
            Alert(
                type=AlertType.STRESS_ALERT,
                title=CRITICAL_ALERT_TITLE,
                message=CRITICAL_ALERT_MESSAGE,
                stress_level=StressTier.CRITICAL,
            )
        ]

    if prediction.level == StressTier.HIGH and prior_high_days >= config.persistent_min_days:
        return [
            Alert(
                type=AlertType.STRESS_ALERT,
                title=PERSISTENT_ALERT_TITLE,
                message=PERSISTENT_ALERT_MESSAGE,
                stress_level=StressTier.HIGH,
            )
        ]

    return []


def _count_prior_high_days(store: Any, record: DailyRecord, config: AlertConfig) -> int:
    return store.count_days_with_level(
        record.user_id,
        StressTier.HIGH,
        days_before(record.day, config.persistent_lookback_days),
        record.day,
        config.persistent_fetch_limit,
    )


def apply_alert_policy(
    store: Any,
    record: DailyRecord,
    prediction: StressPrediction,
    config: AlertConfig = _DEFAULT_ALERTS,
) -> int:
    """Decide and append alerts for ``record``.  Never raises.

    Args:
        store:      A ``RecordStore``.
        record:     The record the prediction was computed for.
        prediction: The freshly computed prediction.
        config:     Alert thresholds and cap.

    Returns:
        Number of alerts appended (0 on any failure).
    """
    try:
        if not prediction.level.is_elevated:
            return 0

        latest = store.get(record.user_id, record.day)
        if latest is None:
            logger.warning(
                "Record not found for alerts; skipping.",
                extra=log_context(record.user_id, record.day),
            )
            return 0
        if len(latest.alerts) >= config.max_alerts_per_record:
            logger.debug("Alert cap reached.", extra=log_context(record.user_id, record.day))
            return 0

        prior_high = 0
        if prediction.level == StressTier.HIGH:
            prior_high = _count_prior_high_days(store, latest, config)

        alerts = decide_alerts(prediction, prior_high, config)
        if not alerts:
            return 0

        appended = store.append_alerts(
            record.user_id, record.day, alerts, config.max_alerts_per_record
        )
        if appended:
            logger.info(
                "Created %d alert(s)", appended,
                extra=log_context(record.user_id, record.day),
            )
        return appended
    except Exception as exc:
        logger.warning(
            "Alert policy skipped: %s", exc, extra=log_context(record.user_id, record.day),
        )
        return 0
