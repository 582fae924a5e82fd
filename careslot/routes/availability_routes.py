from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from careslot.core.errors import SchedulingError
from careslot.models.schedule_template import ScheduleTemplate
from careslot.repositories.sql import SqlAvailabilityStore, SqlScheduleTemplateStore
from careslot.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from careslot.services.slot_generator import SlotGenerator, validate_template

router = APIRouter(tags=['availability'])

MAX_PROVIDERS_PER_RUN = 50


def _normalize_provider_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Provider id is required.')
    return normalized


class CreateTemplateRequest(BaseModel):
    provider_id: str
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    buffer_minutes: int = 0
    break_start_time: time | None = None
    break_end_time: time | None = None

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, value: str) -> str:
        return _normalize_provider_id(value)

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value


class TemplateResponse(BaseModel):
    id: int
    provider_id: str
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    buffer_minutes: int
    break_start_time: time | None = None
    break_end_time: time | None = None
    is_active: bool

    class Config:
        from_attributes = True


class GenerateSlotsRequest(BaseModel):
    provider_ids: list[str]
    start_date: date
    end_date: date

    @field_validator('provider_ids')
    @classmethod
    def validate_provider_ids(cls, value: list[str]) -> list[str]:
        normalized = list(dict.fromkeys(_normalize_provider_id(provider_id) for provider_id in value))
        if not normalized:
            raise ValueError('At least one provider id is required.')
        if len(normalized) > MAX_PROVIDERS_PER_RUN:
            raise ValueError(f'At most {MAX_PROVIDERS_PER_RUN} providers can be generated per request.')
        return normalized


class GenerationErrorResponse(BaseModel):
    date: date
    day_of_week: int
    reason: str


class GenerationResponse(BaseModel):
    provider_id: str
    created: int
    skipped_duplicates: int
    skipped_overlaps: int
    errors: list[GenerationErrorResponse]


class AvailabilitySlotResponse(BaseModel):
    id: int
    provider_id: str
    date: date
    start_time: time
    end_time: time
    is_available: bool
    appointment_id: str | None = None

    class Config:
        from_attributes = True


@router.post('/templates', response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(data: CreateTemplateRequest, db: Session = Depends(get_db)):
    template = ScheduleTemplate(
        provider_id=data.provider_id,
        day_of_week=data.day_of_week,
        start_time=data.start_time,
        end_time=data.end_time,
        slot_duration_minutes=data.slot_duration_minutes,
        buffer_minutes=data.buffer_minutes,
        break_start_time=data.break_start_time,
        break_end_time=data.break_end_time,
        is_active=True,
    )

    try:
        validate_template(template)
        ensure_database_ready()
        return SqlScheduleTemplateStore(db).save(template)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/templates', response_model=list[TemplateResponse])
def list_templates(provider_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return SqlScheduleTemplateStore(db).list_for_provider(provider_id.strip())
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/templates/{template_id}', status_code=status.HTTP_204_NO_CONTENT)
def deactivate_template(template_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        SqlScheduleTemplateStore(db).deactivate(template_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/generate', response_model=list[GenerationResponse])
def generate_slots(data: GenerateSlotsRequest, db: Session = Depends(get_db)):
    ensure_database_ready()
    generator = SlotGenerator(SqlScheduleTemplateStore(db), SqlAvailabilityStore(db))

    try:
        generator.validate_range(data.start_date, data.end_date)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    responses: list[GenerationResponse] = []
    for provider_id in data.provider_ids:
        try:
            result = generator.generate_and_persist(provider_id, data.start_date, data.end_date)
        except SchedulingError as exc:
            raise to_http_exception(exc) from exc

        responses.append(
            GenerationResponse(
                provider_id=provider_id,
                created=result.created,
                skipped_duplicates=result.skipped_duplicates,
                skipped_overlaps=result.skipped_overlaps,
                errors=[
                    GenerationErrorResponse(date=error.date, day_of_week=error.day_of_week, reason=error.reason)
                    for error in result.errors
                ],
            )
        )

    return responses


@router.get('/slots', response_model=list[AvailabilitySlotResponse])
def list_availability_slots(
    provider_id: str = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    available_only: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Start date must be on or before end date.',
        )

    ensure_database_ready()

    try:
        return SqlAvailabilityStore(db).query(provider_id.strip(), start_date, end_date, available_only)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
