"""Scheduled reminder model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, func
from careslot.database import Base

PENDING = "pending"
SENDING = "sending"
SENT = "sent"
FAILED = "failed"
CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({SENT, FAILED, CANCELLED})


class ScheduledReminder(Base):
    """A reminder to deliver for one appointment under one reminder rule."""
    __tablename__ = "scheduled_reminders"
    __table_args__ = (
        UniqueConstraint("appointment_id", "rule_type", "channel", name="uq_scheduled_reminders_appointment_rule_channel"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(String, nullable=False)
    patient_id = Column(String, nullable=False)
    rule_type = Column(String, nullable=False)
    offset_minutes = Column(Integer, nullable=False)
    min_lead_time_minutes = Column(Integer, nullable=True)
    channel = Column(String, nullable=False)  # sms/email
    recipient = Column(String, nullable=False)
    message_template = Column(Text, nullable=False)
    message_content = Column(Text, nullable=False)
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=PENDING)
    claimed_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    delivery_reference = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
