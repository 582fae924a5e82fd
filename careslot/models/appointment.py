"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, func
from careslot.database import Base


class Appointment(Base):
    """Represents a scheduled appointment bound to one availability slot."""
    __tablename__ = "appointments"

    id = Column(String, primary_key=True)
    slot_id = Column(Integer, nullable=True, index=True)
    provider_id = Column(String, nullable=False)
    provider_name = Column(String)
    patient_id = Column(String, nullable=False)
    patient_name = Column(String)
    patient_phone = Column(String)
    patient_email = Column(String)
    appointment_type = Column(String)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="booked")
    notes = Column(String)
    created_at = Column(DateTime, server_default=func.now())
