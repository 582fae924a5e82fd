from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from careslot.core.errors import SchedulingError
from careslot.repositories.sql import SqlReminderStore
from careslot.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from careslot.services.dispatcher import ReminderDispatcher
from careslot.services.notifications import LoggingNotificationChannel, NotificationChannel

router = APIRouter(tags=['reminders'])


class ReminderResponse(BaseModel):
    id: int
    appointment_id: str
    rule_type: str
    channel: str
    recipient: str
    message_content: str
    scheduled_for: datetime
    status: str
    sent_at: datetime | None = None
    error_message: str | None = None

    class Config:
        from_attributes = True


class DispatchResponse(BaseModel):
    due: int
    claimed: int
    sent: int
    failed: int
    lost_claims: int
    expired_claims: int


def get_notification_channel() -> NotificationChannel:
    return LoggingNotificationChannel()


@router.get('', response_model=list[ReminderResponse])
def list_reminders(appointment_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return SqlReminderStore(db).list_for_appointment(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/dispatch', response_model=DispatchResponse)
def dispatch_reminders(
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
):
    ensure_database_ready()

    try:
        summary = ReminderDispatcher(SqlReminderStore(db), channel).run_once()
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return DispatchResponse(
        due=summary.due,
        claimed=summary.claimed,
        sent=summary.sent,
        failed=summary.failed,
        lost_claims=summary.lost_claims,
        expired_claims=summary.expired_claims,
    )
