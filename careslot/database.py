import os
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from careslot.core import config


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./careslot.db")

engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_reminder_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_slots' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_slots_provider_date '
                    'ON availability_slots(provider_id, date, start_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_slots_open '
                    'ON availability_slots(provider_id, is_available, date)'
                )
            )

        _availability_schema_checked = True


def ensure_reminder_schema() -> None:
    global _reminder_schema_checked

    if _reminder_schema_checked:
        return

    with _schema_lock:
        if _reminder_schema_checked:
            return

        inspector = inspect(engine)

        if 'scheduled_reminders' not in inspector.get_table_names():
            _reminder_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('scheduled_reminders')}
        migration_steps = [
            ('claimed_at', 'ALTER TABLE scheduled_reminders ADD COLUMN claimed_at TIMESTAMP'),
            ('delivery_reference', 'ALTER TABLE scheduled_reminders ADD COLUMN delivery_reference VARCHAR'),
            ('error_message', 'ALTER TABLE scheduled_reminders ADD COLUMN error_message VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_scheduled_reminders_due '
                    'ON scheduled_reminders(status, scheduled_for)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_scheduled_reminders_appointment '
                    'ON scheduled_reminders(appointment_id, status)'
                )
            )

        _reminder_schema_checked = True
