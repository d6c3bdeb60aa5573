"""
Tests for stress_forecaster/cli.py using typer's CliRunner.

Every command runs against a tmp-path config (catalog disabled, no
re-prediction delay) and a tmp-path SQLite file.
"""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from stress_forecaster import cli
from stress_forecaster.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "_configure_logging", lambda config: None)


@pytest.fixture
def cli_args(tmp_path) -> list[str]:
    config_path = tmp_path / "test.toml"
    config_path.write_text(
        f"""
[database]
db_path = "{(tmp_path / 'cli.db').as_posix()}"
wal_mode = false

[catalog]
enabled = false

[retrigger]
delay_seconds = 0.0

[logging]
level = "ERROR"
log_file = ""
""",
        encoding="utf-8",
    )
    return ["--config", str(config_path)]


def _invoke(*args: str):
    return runner.invoke(app, list(args))


class TestSetupCommands:
    def test_init_db_twice(self, cli_args):
        first = _invoke("init-db", *cli_args)
        assert first.exit_code == 0, first.output
        assert "Migrations applied: 2" in first.output

        second = _invoke("init-db", *cli_args)
        assert "Migrations applied: 0" in second.output

    def test_validate_config(self, cli_args):
        result = _invoke("validate-config", *cli_args)
        assert result.exit_code == 0
        assert "Catalog:           disabled" in result.output

    def test_missing_config(self, tmp_path):
        result = _invoke("validate-config", "--config", str(tmp_path / "absent.toml"))
        assert result.exit_code == 1


class TestPredictionCommands:
    def test_predict_then_cached(self, cli_args):
        first = _invoke("predict", "alice", *cli_args)
        assert first.exit_code == 0, first.output
        payload = json.loads(first.output)
        assert payload["cached"] is False
        assert 0 <= payload["prediction"]["score"] <= 100
        assert payload["recommendations"]

        second = json.loads(_invoke("predict", "alice", *cli_args).output)
        assert second["cached"] is True
        assert second["prediction"] == payload["prediction"]

    def test_invalid_day(self, cli_args):
        assert _invoke("predict", "alice", "--day", "yesterday", *cli_args).exit_code == 1

    def test_scheduled_run(self, cli_args):
        _invoke("sync-wellbeing", "alice", "--sleep-hours", "7", "--no-repredict", *cli_args)
        _invoke("sync-wellbeing", "bob", "--steps", "1200", "--no-repredict", *cli_args)

        result = _invoke("run-scheduled-predictions", *cli_args)
        assert result.exit_code == 0, result.output
        assert "Users processed: 2" in result.output
        assert "Status:          success" in result.output


class TestSignalCommands:
    def test_log_mood_repredicts(self, cli_args):
        result = _invoke("log-mood", "alice", "35", "--note", "rough", *cli_args)
        assert result.exit_code == 0, result.output
        assert "[OK] Mood 35 recorded" in result.output

        history = json.loads(_invoke("history", "alice", *cli_args).output)
        assert history["stats"]["total_days"] == 1

    def test_log_mood_out_of_range(self, cli_args):
        result = _invoke("log-mood", "alice", "140", "--no-repredict", *cli_args)
        assert result.exit_code == 1

    def test_sync_wellbeing(self, cli_args):
        result = _invoke(
            "sync-wellbeing", "alice", "--sleep-hours", "6.5", "--source", "fitbit",
            "--no-repredict", *cli_args,
        )
        assert result.exit_code == 0, result.output
        snapshot = json.loads(result.output)
        assert snapshot["sleep_hours"] == 6.5
        assert snapshot["source"] == "fitbit"

    def test_sync_wellbeing_unknown_source(self, cli_args):
        result = _invoke("sync-wellbeing", "alice", "--steps", "10", "--source", "garmin", *cli_args)
        assert result.exit_code == 1


class TestRecommendationAndAlertCommands:
    def test_list_and_complete(self, cli_args):
        payload = json.loads(_invoke("predict", "alice", *cli_args).output)
        rec_id = payload["recommendations"][0]["rec_id"]

        listed = _invoke("recommendations", "alice", *cli_args)
        assert rec_id in listed.output

        done = _invoke("complete-recommendation", "alice", rec_id, *cli_args)
        assert done.exit_code == 0, done.output
        assert rec_id not in _invoke("recommendations", "alice", *cli_args).output

    def test_complete_unknown(self, cli_args):
        assert _invoke("complete-recommendation", "alice", "nope", *cli_args).exit_code == 1

    def test_no_alerts(self, cli_args):
        result = _invoke("alerts", "alice", *cli_args)
        assert "No active alerts." in result.output
        assert _invoke("ack-alert", "alice", "nope", *cli_args).exit_code == 1


class TestSessionAndSummaryCommands:
    def test_log_session_then_list(self, cli_args):
        result = _invoke(
            "log-session", "alice", "box-breathing",
            "--stress-before", "70", "--stress-after", "55", *cli_args,
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["effectiveness"] == 15

        listed = json.loads(_invoke("sessions", "alice", *cli_args).output)
        assert [s["session"]["exercise_id"] for s in listed["sessions"]] == ["box-breathing"]

    def test_log_session_invalid_rating(self, cli_args):
        result = _invoke("log-session", "alice", "walk", "--stress-before", "150", *cli_args)
        assert result.exit_code == 1

    def test_sessions_empty_range(self, cli_args):
        _invoke("log-session", "alice", "walk", "--day", "2026-03-02", *cli_args)
        result = _invoke("sessions", "alice", "--from", "2026-03-03", *cli_args)
        assert json.loads(result.output) == {"sessions": []}

    def test_weekly_summary(self, cli_args):
        _invoke("sync-wellbeing", "alice", "--steps", "4000", "--day", "2026-03-09", "--no-repredict", *cli_args)
        _invoke("log-session", "alice", "walk", "--day", "2026-03-11", *cli_args)

        result = _invoke("weekly-summary", "alice", "--week-of", "2026-03-12", *cli_args)
        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["week_start"] == "2026-03-09"
        assert summary["week_end"] == "2026-03-15"
        assert [d["exercise_sessions"] for d in summary["days"]] == [0, 1]
        assert summary["stats"]["average_steps"] == 4000

    def test_insights(self, cli_args):
        _invoke("predict", "alice", *cli_args)
        result = _invoke("insights", "alice", "--days", "7", *cli_args)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["total_days"] == 1
