"""
Tests for stress_forecaster/utils/logging.py.

What we test
------------
  - ``log_context`` builds the ``extra=`` mapping with an ISO day.
  - Text lines end with ``[user=... day=...]`` only when context was passed.
  - JSON lines carry ``user_id`` / ``day`` as top-level fields.
  - ``configure_logging`` installs the context filter on every handler.
  - The orchestrator tags its log records with the user and day.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone


from stress_forecaster.config import AppConfig, CatalogConfig, LoggingConfig
from stress_forecaster.pipeline.orchestrator import PredictionOrchestrator
from stress_forecaster.utils.logging import (
    UserContextFilter,
    build_formatter,
    configure_logging,
    log_context,
)

DAY = date(2026, 3, 10)


def _record(extra: dict | None = None) -> logging.LogRecord:
    record = logging.LogRecord(
        "stress_forecaster.test", logging.INFO, __file__, 1, "Prediction | score=%d", (62,), None,
    )
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    UserContextFilter().filter(record)
    return record


class TestLogContext:
    def test_user_and_day(self):
        assert log_context("alice", DAY) == {"user_id": "alice", "day": "2026-03-10"}

    def test_day_optional_and_extra_fields(self):
        assert log_context("bob", run="r1") == {"user_id": "bob", "run": "r1"}


class TestFormatters:
    def test_text_appends_context(self):
        line = build_formatter(json_format=False).format(_record(log_context("alice", DAY)))
        assert line.endswith("Prediction | score=62 [user=alice day=2026-03-10]")

    def test_text_without_context_unchanged(self):
        line = build_formatter(json_format=False).format(_record())
        assert line.endswith("stress_forecaster.test: Prediction | score=62")

    def test_json_fields(self):
        payload = json.loads(build_formatter(json_format=True).format(_record(log_context("alice", DAY))))
        assert payload["msg"] == "Prediction | score=62"
        assert payload["user_id"] == "alice"
        assert payload["day"] == "2026-03-10"
        assert "context" not in payload

    def test_json_without_context(self):
        payload = json.loads(build_formatter(json_format=True).format(_record()))
        assert set(payload) == {"ts", "level", "logger", "msg"}


class TestConfigureLogging:
    def test_handlers_carry_filter(self, tmp_path, monkeypatch):
        installed = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: installed.update(kwargs))
        log_file = tmp_path / "logs" / "stress.log"

        configure_logging(LoggingConfig(level="DEBUG", log_file=str(log_file)))

        handlers = installed["handlers"]
        assert installed["level"] == logging.DEBUG
        assert len(handlers) == 2
        for handler in handlers:
            assert any(isinstance(f, UserContextFilter) for f in handler.filters)

        file_handler = handlers[1]
        file_handler.handle(logging.makeLogRecord({
            "name": "stress_forecaster.test", "levelno": logging.INFO, "levelname": "INFO",
            "msg": "Saved", **log_context("alice", DAY),
        }))
        file_handler.close()
        assert "Saved [user=alice day=2026-03-10]" in log_file.read_text(encoding="utf-8")


def test_orchestrator_records_carry_context(memory_store, caplog):
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
    orchestrator = PredictionOrchestrator(
        memory_store, config=AppConfig(catalog=CatalogConfig(enabled=False)), clock=lambda: now,
    )
    with caplog.at_level(logging.INFO, logger="stress_forecaster.pipeline.orchestrator"):
        orchestrator.compute_prediction("alice", DAY)

    tagged = [r for r in caplog.records if r.getMessage().startswith("Prediction |")]
    assert tagged
    assert tagged[0].user_id == "alice"
    assert tagged[0].day == "2026-03-10"
