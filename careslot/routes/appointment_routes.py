from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from careslot.core.errors import SchedulingError
from careslot.repositories.sql import SqlAppointmentRepository, SqlAvailabilityStore, SqlReminderStore
from careslot.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from careslot.services.booking import BookingCoordinator, BookingRequest, BookingResult
from careslot.services.reminders import ReminderScheduler

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600


class CreateAppointmentRequest(BaseModel):
    slot_id: int
    patient_id: str
    patient_name: str | None = None
    patient_phone: str | None = None
    patient_email: str | None = None
    appointment_type: str | None = None
    provider_name: str | None = None
    notes: str | None = None

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Patient id is required.')
        return normalized

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip().lower()

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip().lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    slot_id: int


class SkippedReminderResponse(BaseModel):
    rule_type: str
    reason: str


class AppointmentResponse(BaseModel):
    id: str
    slot_id: int | None = None
    provider_id: str
    patient_id: str
    appointment_type: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    reminders_scheduled: int = 0
    reminders_skipped: list[SkippedReminderResponse] = []


class CancellationResponse(BaseModel):
    id: str
    status: str
    reminders_cancelled: int


def build_coordinator(db: Session) -> BookingCoordinator:
    return BookingCoordinator(
        availability=SqlAvailabilityStore(db),
        appointments=SqlAppointmentRepository(db),
        reminders=ReminderScheduler(SqlReminderStore(db)),
    )


def to_appointment_response(result: BookingResult) -> AppointmentResponse:
    appointment = result.appointment
    return AppointmentResponse(
        id=appointment.id,
        slot_id=appointment.slot_id,
        provider_id=appointment.provider_id,
        patient_id=appointment.patient_id,
        appointment_type=appointment.appointment_type,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=appointment.status,
        notes=appointment.notes,
        reminders_scheduled=len(result.reminders.created) + len(result.reminders.updated),
        reminders_skipped=[
            SkippedReminderResponse(rule_type=skip.rule_type, reason=skip.reason)
            for skip in result.reminders.skipped
        ],
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = build_coordinator(db).book_appointment(
            BookingRequest(
                slot_id=data.slot_id,
                patient_id=data.patient_id,
                patient_name=data.patient_name,
                patient_phone=data.patient_phone,
                patient_email=data.patient_email,
                appointment_type=data.appointment_type,
                provider_name=data.provider_name,
                notes=data.notes,
            )
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(result)


@router.post('/{appointment_id}/cancel', response_model=CancellationResponse)
def cancel_appointment(appointment_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = build_coordinator(db).cancel_appointment(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return CancellationResponse(
        id=result.appointment.id,
        status=result.appointment.status,
        reminders_cancelled=result.reminders_cancelled,
    )


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleAppointmentRequest,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = build_coordinator(db).reschedule_appointment(appointment_id, data.slot_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(result)
