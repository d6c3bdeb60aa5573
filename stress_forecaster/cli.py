"""
Stress Forecaster — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute the action against the SQLite record store.
  5. Report the result to stdout (JSON for prediction results).

Install and run::

    pip install -e .
    stress-forecaster --help
    stress-forecaster init-db
    stress-forecaster sync-wellbeing alice --sleep-hours 7.5 --steps 9000
    stress-forecaster log-mood alice 72 --note "good day"
    stress-forecaster log-session alice box-breathing --stress-before 70 --stress-after 55
    stress-forecaster predict alice
    stress-forecaster weekly-summary alice
    stress-forecaster run-scheduled-predictions
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="stress-forecaster",
    help="Daily stress scoring, recommendations and alerts.",
    add_completion=False,
)

_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")
_DB_OPTION = typer.Option(None, "--db-path", help="Override DB path from config.")
_DAY_OPTION = typer.Option(None, "--day", help="Calendar day (ISO date). Defaults to today (UTC).")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from stress_forecaster.config import load_config

    try:
        return load_config(Path(config_path) if config_path else None)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config) -> None:
    from stress_forecaster.utils.logging import configure_logging
    configure_logging(config.logging)


def _parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(f"[ERROR] Invalid date '{value}'. Use YYYY-MM-DD.", err=True)
        raise typer.Exit(code=1)


def _setup(config_path: Optional[str], db_path: Optional[str]):
    """Load config, configure logging and open an initialized record store."""
    from stress_forecaster.db.store import SqliteRecordStore

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    store = SqliteRecordStore.from_config(config.database, db_path)
    store.initialize()
    return config, store


def _echo_json(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _run_with_trigger(config, store, action):
    """Run a signal write with a trigger attached, waiting for queued re-predictions."""
    from stress_forecaster.pipeline.orchestrator import build_orchestrator
    from stress_forecaster.pipeline.retrigger import RepredictionTrigger
    from stress_forecaster.services.daily_records import DailyRecordService

    trigger = RepredictionTrigger(build_orchestrator(config, store), store, config.retrigger)
    try:
        return action(DailyRecordService(store, trigger=trigger))
    finally:
        trigger.shutdown(wait=True)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite database and apply pending migrations.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from stress_forecaster.db.schema import ALL_TABLE_NAMES
    from stress_forecaster.db.store import SqliteRecordStore

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    store = SqliteRecordStore.from_config(config.database, db_path)
    typer.echo(f"Initializing database at: {store.db_path}")
    migrations_applied = store.initialize()

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print the full config as JSON."),
) -> None:
    """Validate the configuration file and print key values."""
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Model version:     {config.scoring.model_version}")
    typer.echo(f"  Staleness window:  {config.prediction.staleness_hours}h")
    typer.echo(f"  History days:      {config.prediction.history_days}")
    typer.echo(f"  Catalog:           {config.catalog.base_url if config.catalog.enabled else 'disabled'}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        _echo_json(config.model_dump(mode="json"))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("predict")
def predict(
    user_id: str = typer.Argument(..., help="User identifier."),
    day: Optional[str] = _DAY_OPTION,
    force_refresh: bool = typer.Option(False, "--force-refresh", help="Ignore the staleness window."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Compute (or serve the cached) stress prediction for a user."""
    from stress_forecaster.pipeline.orchestrator import build_orchestrator

    target_day = _parse_day(day)
    config, store = _setup(config_path, db_path)

    result = build_orchestrator(config, store).compute_prediction(
        user_id, target_day, force_refresh=force_refresh
    )
    _echo_json(result.to_dict())


@app.command("log-mood")
def log_mood(
    user_id: str = typer.Argument(..., help="User identifier."),
    mood_score: float = typer.Argument(..., help="Self-reported mood, 0–100."),
    note: Optional[str] = typer.Option(None, "--note", help="Free-text note."),
    repredict: bool = typer.Option(True, "--repredict/--no-repredict", help="Refresh the prediction afterwards."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Record a mood entry for today."""
    from stress_forecaster.services.daily_records import DailyRecordService

    config, store = _setup(config_path, db_path)

    def _action(service: DailyRecordService):
        return service.add_mood_entry(user_id, mood_score, note=note)

    try:
        entry = _run_with_trigger(config, store, _action) if repredict else _action(DailyRecordService(store))
    except Exception as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Mood {entry.mood_score:g} recorded at {entry.recorded_at.isoformat()}.")


@app.command("sync-wellbeing")
def sync_wellbeing(
    user_id: str = typer.Argument(..., help="User identifier."),
    sleep_hours: Optional[float] = typer.Option(None, "--sleep-hours", help="Hours slept (0–24)."),
    steps: Optional[int] = typer.Option(None, "--steps", help="Step count."),
    source: Optional[str] = typer.Option(None, "--source", help="manual, google_fit, apple_health, fitbit, simulation."),
    day: Optional[str] = _DAY_OPTION,
    repredict: bool = typer.Option(True, "--repredict/--no-repredict", help="Refresh the prediction afterwards."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Upsert sleep and step data for a day."""
    from stress_forecaster.services.daily_records import DailyRecordService
    from stress_forecaster.taxonomy.stress_taxonomy import DataSource

    target_day = _parse_day(day)
    try:
        data_source = DataSource(source) if source else None
    except ValueError:
        typer.echo(f"[ERROR] Unknown source '{source}'.", err=True)
        raise typer.Exit(code=1)

    config, store = _setup(config_path, db_path)

    def _action(service: DailyRecordService):
        return service.sync_wellbeing(
            user_id, sleep_hours, steps, data_source, target_day,
            skip_reprediction=not repredict,
        )

    try:
        snapshot = _run_with_trigger(config, store, _action) if repredict else _action(DailyRecordService(store))
    except Exception as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    _echo_json(snapshot.model_dump(mode="json"))


@app.command("history")
def history(
    user_id: str = typer.Argument(..., help="User identifier."),
    days: int = typer.Option(30, "--days", min=1, help="Look-back window in days."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Show the stress history and its statistics."""
    from stress_forecaster.services.daily_records import DailyRecordService

    _, store = _setup(config_path, db_path)
    _echo_json(DailyRecordService(store).stress_history(user_id, days).model_dump(mode="json"))


@app.command("recommendations")
def recommendations(
    user_id: str = typer.Argument(..., help="User identifier."),
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List uncompleted recommendations, highest priority first."""
    from stress_forecaster.services.daily_records import DailyRecordService

    target_day = _parse_day(day)
    _, store = _setup(config_path, db_path)
    active = DailyRecordService(store).active_recommendations(user_id, target_day)
    if not active:
        typer.echo("No active recommendations.")
        return
    for rec in active:
        duration = f" ({rec.duration_minutes} min)" if rec.duration_minutes else ""
        typer.echo(f"  [p{rec.priority}] {rec.title}{duration} — {rec.type} — id={rec.rec_id}")


@app.command("complete-recommendation")
def complete_recommendation(
    user_id: str = typer.Argument(..., help="User identifier."),
    rec_id: str = typer.Argument(..., help="Recommendation id."),
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Mark a recommendation as completed."""
    from stress_forecaster.services.daily_records import DailyRecordService

    target_day = _parse_day(day)
    _, store = _setup(config_path, db_path)
    try:
        rec = DailyRecordService(store).complete_recommendation(user_id, rec_id, target_day)
    except Exception as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] '{rec.title}' marked as completed.")


@app.command("alerts")
def alerts(
    user_id: str = typer.Argument(..., help="User identifier."),
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List unacknowledged alerts, newest first."""
    from stress_forecaster.services.daily_records import DailyRecordService

    target_day = _parse_day(day)
    _, store = _setup(config_path, db_path)
    active = DailyRecordService(store).active_alerts(user_id, target_day)
    if not active:
        typer.echo("No active alerts.")
        return
    for alert in active:
        typer.echo(f"  [{alert.stress_level}] {alert.title}: {alert.message} (id={alert.alert_id})")


@app.command("ack-alert")
def ack_alert(
    user_id: str = typer.Argument(..., help="User identifier."),
    alert_id: str = typer.Argument(..., help="Alert id."),
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Acknowledge an alert."""
    from stress_forecaster.services.daily_records import DailyRecordService

    target_day = _parse_day(day)
    _, store = _setup(config_path, db_path)
    try:
        alert = DailyRecordService(store).acknowledge_alert(user_id, alert_id, target_day)
    except Exception as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Alert '{alert.title}' acknowledged.")


@app.command("log-session")
def log_session(
    user_id: str = typer.Argument(..., help="User identifier."),
    exercise_id: str = typer.Argument(..., help="Exercise-catalog id."),
    stress_before: Optional[float] = typer.Option(None, "--stress-before", help="Self-rated stress before, 0–100."),
    stress_after: Optional[float] = typer.Option(None, "--stress-after", help="Self-rated stress after, 0–100."),
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Record a completed exercise session."""
    from stress_forecaster.services.daily_records import DailyRecordService

    target_day = _parse_day(day)
    _, store = _setup(config_path, db_path)
    try:
        session = DailyRecordService(store).record_session(
            user_id, exercise_id,
            stress_before=stress_before, stress_after=stress_after, day=target_day,
        )
    except Exception as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    _echo_json(session.model_dump(mode="json"))


@app.command("sessions")
def sessions(
    user_id: str = typer.Argument(..., help="User identifier."),
    since: Optional[str] = typer.Option(None, "--from", help="First day (ISO date), inclusive."),
    until: Optional[str] = typer.Option(None, "--to", help="Last day (ISO date), inclusive."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List recorded exercise sessions, newest day first."""
    from stress_forecaster.services.daily_records import DailyRecordService

    since_day, until_day = _parse_day(since), _parse_day(until)
    _, store = _setup(config_path, db_path)
    entries = DailyRecordService(store).list_sessions(user_id, since_day, until_day)
    _echo_json({"sessions": [e.model_dump(mode="json") for e in entries]})


@app.command("weekly-summary")
def weekly_summary(
    user_id: str = typer.Argument(..., help="User identifier."),
    week_start: Optional[str] = typer.Option(None, "--week-of", help="Any day (ISO date) of the week. Defaults to today."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Summarise the Monday to Sunday week: per-day values, averages and trends."""
    from stress_forecaster.services.daily_records import DailyRecordService

    anchor = _parse_day(week_start)
    _, store = _setup(config_path, db_path)
    _echo_json(DailyRecordService(store).weekly_summary(user_id, anchor).model_dump(mode="json"))


@app.command("insights")
def insights(
    user_id: str = typer.Argument(..., help="User identifier."),
    days: int = typer.Option(30, "--days", min=1, help="Look-back window in days."),
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Averages, exercise frequency and stress trend over recent days."""
    from stress_forecaster.services.daily_records import DailyRecordService

    _, store = _setup(config_path, db_path)
    _echo_json(DailyRecordService(store).insights(user_id, days).model_dump(mode="json"))


@app.command("run-scheduled-predictions")
def run_scheduled_predictions(
    day: Optional[str] = _DAY_OPTION,
    db_path: Optional[str] = _DB_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Refresh predictions for every known user (cron: 0 8,14,20 * * *)."""
    from stress_forecaster.pipeline.scheduled import ScheduledPredictionStage

    target_day = _parse_day(day)
    config, store = _setup(config_path, db_path)

    try:
        run = ScheduledPredictionStage(config, store, db_path=store.db_path).run(day=target_day)
    except Exception as exc:
        typer.echo(f"[ERROR] Scheduled predictions failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Users processed: {run.rows_processed}")
    typer.echo(f"  Status:          {run.status}")
    if run.error_message:
        typer.echo(f"  Errors:          {run.error_message}")
    typer.echo(f"[OK] Run {run.run_slug} complete.")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
