"""
Command line entry points for the recurring jobs.

Usage:
    python -m careslot.cli dispatch-reminders
    python -m careslot.cli generate-slots provider-1 provider-2 --days 14
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

import typer
from sqlalchemy.exc import SQLAlchemyError

from careslot.core import config
from careslot.core.errors import SchedulingError
from careslot.database import Base, SessionLocal, engine, ensure_availability_schema, ensure_reminder_schema
from careslot.models import appointment, availability, reminder, schedule_template  # noqa: F401
from careslot.repositories.sql import SqlReminderStore
from careslot.services.dispatcher import ReminderDispatcher
from careslot.services.notifications import LoggingNotificationChannel
from careslot.services.slot_generator import generate_for_providers

app = typer.Typer(
    name="careslot",
    help="Slot generation and reminder dispatch jobs",
    add_completion=False,
)

logger = logging.getLogger(__name__)


def _prepare() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_reminder_schema()
    except SQLAlchemyError as exc:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
        raise typer.Exit(code=1) from exc


@app.command("dispatch-reminders")
def dispatch_reminders() -> None:
    """Send every reminder that is due now. Meant to be run from cron."""
    _prepare()
    db = SessionLocal()
    try:
        summary = ReminderDispatcher(SqlReminderStore(db), LoggingNotificationChannel()).run_once()
    except SchedulingError as exc:
        typer.echo(f"Reminder dispatch failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        db.close()

    typer.echo(
        f"due={summary.due} sent={summary.sent} failed={summary.failed} "
        f"lost_claims={summary.lost_claims} expired_claims={summary.expired_claims}"
    )


@app.command("generate-slots")
def generate_slots(
    provider_ids: List[str] = typer.Argument(..., help="Providers to generate slots for"),
    start: Optional[str] = typer.Option(None, help="First date (YYYY-MM-DD), defaults to today"),
    days: int = typer.Option(14, help="Number of days to generate"),
) -> None:
    """Expand provider schedule templates into bookable slots."""
    _prepare()
    try:
        start_date = date.fromisoformat(start) if start else date.today()
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid start date: {start}") from exc
    if days <= 0:
        raise typer.BadParameter("days must be positive")
    end_date = start_date + timedelta(days=days - 1)

    results, failures = generate_for_providers(provider_ids, start_date, end_date, SessionLocal)

    for result in results:
        typer.echo(
            f"{result.provider_id}: created={result.created} duplicates={result.skipped_duplicates} "
            f"overlaps={result.skipped_overlaps} errors={len(result.errors)}"
        )
        for error in result.errors:
            typer.echo(f"  {error.date.isoformat()}: {error.reason}")
    for failure in failures:
        typer.echo(f"{failure.provider_id}: FAILED {failure.reason}", err=True)

    if failures:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
