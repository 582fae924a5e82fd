"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Time, UniqueConstraint, func
from careslot.database import Base


class AvailabilitySlot(Base):
    """Represents a concrete bookable slot for one provider."""
    __tablename__ = "availability_slots"
    __table_args__ = (
        UniqueConstraint("provider_id", "date", "start_time", name="uq_availability_slots_provider_start"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    appointment_id = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
