"""Schedule template model definitions."""

from sqlalchemy import Boolean, Column, Index, Integer, String, Time, text
from careslot.database import Base


class ScheduleTemplate(Base):
    """Recurring weekly availability for one provider and day of week.

    ``day_of_week`` uses 0=Sunday through 6=Saturday.
    """
    __tablename__ = "schedule_templates"
    __table_args__ = (
        Index(
            "uq_schedule_templates_active_day",
            "provider_id",
            "day_of_week",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    break_start_time = Column(Time, nullable=True)
    break_end_time = Column(Time, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
