"""
Structured logging setup for the Stress Forecaster.

Call ``configure_logging(config)`` once at CLI entry (before any prediction
work) to set up the root logger with the configured level and optional file
handler.

All internal modules use ``logging.getLogger(__name__)``; never call
``configure_logging`` or ``basicConfig`` from within library code.

Per-user context
----------------
Prediction, re-prediction and record-service log calls pass the user and
calendar day they concern through ``extra=log_context(user_id, day)``
instead of formatting them into the message.  Both output formats render
that context:

  text:  ``... orchestrator: Prediction | score=62 level=high [user=alice day=2026-03-10]``
  JSON:  ``{"ts": "...", "level": "INFO", "logger": "...", "msg": "...",
          "user_id": "alice", "day": "2026-03-10"}``

Records logged without context (third-party libraries, startup messages)
are rendered unchanged.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from stress_forecaster.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s%(context)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

CONTEXT_FIELDS = ("user_id", "day")

# Attributes present on every LogRecord; anything else came from ``extra=``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "context"}


def log_context(user_id: str, day: Optional[date] = None, **fields: Any) -> dict[str, Any]:
    """Build the ``extra=`` mapping for a log call about one user's day.

    >>> log_context("alice", date(2026, 3, 10))
    {'user_id': 'alice', 'day': '2026-03-10'}
    """
    context: dict[str, Any] = {"user_id": user_id}
    if day is not None:
        context["day"] = day.isoformat()
    context.update(fields)
    return context


class UserContextFilter(logging.Filter):
    """Render ``user_id`` / ``day`` extras into a ``context`` attribute.

    Always passes the record; sets ``record.context`` to
    ``" [user=<id> day=<day>]"`` when the call carried context, else ``""``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [
            f"{'user' if name == 'user_id' else name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        record.context = f" [{' '.join(parts)}]" if parts else ""
        return True


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line.

    Fields: ``ts``, ``level``, ``logger``, ``msg``, then any ``extra=``
    fields (``user_id``, ``day``, ...) at the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key, val in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = val
        return json.dumps(payload, default=str)


def build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def configure_logging(config: "LoggingConfig") -> None:
    """Configure the root logger from a ``LoggingConfig`` instance.

    Sets up:
      - StreamHandler (stdout) at the configured level.
      - Optional FileHandler if ``config.log_file`` is set.
      - JSON line format if ``config.json_format`` is ``True``.

    Every handler carries a ``UserContextFilter`` so both formats can show
    the user and day of the call.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter = build_formatter(config.json_format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(UserContextFilter())

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Quieten noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
