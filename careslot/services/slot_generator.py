"""
Slot generation

Expands recurring weekly schedule templates into dated candidate slots and
persists them through the availability store.

Algorithm per date:
    1. Find the active template for the date's day of week (0=Sunday).
       No template means no slots for that date.
    2. Walk a cursor from the template start: emit [cursor, cursor + duration)
       unless it would run past the template end, then advance the cursor by
       duration + buffer.
    3. A candidate that overlaps the break window is dropped and the cursor
       resumes at the break end.

A template that fails validation only costs its own day; every other date
and provider is still generated.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Mapping

from sqlalchemy.orm import Session

from careslot.core import config
from careslot.core.errors import SchedulingError, ValidationError
from careslot.models.schedule_template import ScheduleTemplate
from careslot.repositories.base import AvailabilityStore, ScheduleTemplateStore, SlotCandidate
from careslot.repositories.sql import SqlAvailabilityStore, SqlScheduleTemplateStore

logger = logging.getLogger(__name__)


def day_of_week(value: date) -> int:
    """Day index with 0=Sunday through 6=Saturday."""
    return (value.weekday() + 1) % 7


def iterate_dates(start_date: date, end_date: date) -> Iterable[date]:
    current_day = start_date
    while current_day <= end_date:
        yield current_day
        current_day += timedelta(days=1)


def validate_template(template: ScheduleTemplate) -> None:
    if template.day_of_week is None or not 0 <= template.day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')

    if template.slot_duration_minutes is None or template.slot_duration_minutes <= 0:
        raise ValidationError('Slot duration must be greater than zero minutes.')

    if (template.buffer_minutes or 0) < 0:
        raise ValidationError('Buffer between slots cannot be negative.')

    if template.start_time is None or template.end_time is None or template.end_time <= template.start_time:
        raise ValidationError('Template end time must be after its start time.')

    break_start, break_end = template.break_start_time, template.break_end_time
    if (break_start is None) != (break_end is None):
        raise ValidationError('Break start and end must be set together.')

    if break_start is not None:
        if break_end <= break_start:
            raise ValidationError('Break end time must be after break start time.')
        if break_start < template.start_time or break_end > template.end_time:
            raise ValidationError('Break window must fall within the template hours.')


def expand_template_day(template: ScheduleTemplate, slot_date: date, provider_id: str | None = None) -> list[SlotCandidate]:
    """Candidate slots for one template on one date; raises ValidationError."""
    validate_template(template)

    duration = timedelta(minutes=template.slot_duration_minutes)
    step = duration + timedelta(minutes=template.buffer_minutes or 0)
    day_end = datetime.combine(slot_date, template.end_time)
    break_window = None
    if template.break_start_time is not None:
        break_window = (
            datetime.combine(slot_date, template.break_start_time),
            datetime.combine(slot_date, template.break_end_time),
        )

    candidates: list[SlotCandidate] = []
    cursor = datetime.combine(slot_date, template.start_time)

    while cursor + duration <= day_end:
        slot_end = cursor + duration

        if break_window and cursor < break_window[1] and break_window[0] < slot_end:
            cursor = break_window[1]
            continue

        candidates.append(
            SlotCandidate(
                provider_id=provider_id or template.provider_id,
                date=slot_date,
                start_time=cursor.time(),
                end_time=slot_end.time(),
            )
        )
        cursor += step

    return candidates


@dataclass
class DayError:
    date: date
    day_of_week: int
    reason: str


@dataclass
class GenerationResult:
    provider_id: str
    candidates: list[SlotCandidate] = field(default_factory=list)
    errors: list[DayError] = field(default_factory=list)
    created: int = 0
    skipped_duplicates: int = 0
    skipped_overlaps: int = 0


class SlotGenerator:
    def __init__(
        self,
        template_store: ScheduleTemplateStore,
        availability_store: AvailabilityStore,
        horizon_days: int | None = None,
    ):
        self.template_store = template_store
        self.availability_store = availability_store
        self.horizon_days = horizon_days if horizon_days is not None else config.SLOT_GENERATION_HORIZON_DAYS

    def validate_range(self, start_date: date, end_date: date) -> None:
        if start_date > end_date:
            raise ValidationError('Start date must be on or before end date.')
        if (end_date - start_date).days + 1 > self.horizon_days:
            raise ValidationError(f'Slots can only be generated {self.horizon_days} days at a time.')

    def generate(
        self,
        provider_id: str,
        start_date: date,
        end_date: date,
        templates: Mapping[int, ScheduleTemplate],
    ) -> GenerationResult:
        """Expand templates over ``[start_date, end_date]`` without persisting."""
        self.validate_range(start_date, end_date)
        result = GenerationResult(provider_id=provider_id)

        for current_day in iterate_dates(start_date, end_date):
            weekday = day_of_week(current_day)
            template = templates.get(weekday)
            if template is None:
                continue

            try:
                result.candidates.extend(expand_template_day(template, current_day, provider_id))
            except ValidationError as exc:
                logger.warning(
                    'Skipping template %s for provider %s on %s: %s',
                    template.id,
                    provider_id,
                    current_day.isoformat(),
                    exc,
                )
                result.errors.append(DayError(date=current_day, day_of_week=weekday, reason=str(exc)))

        return result

    def generate_and_persist(self, provider_id: str, start_date: date, end_date: date) -> GenerationResult:
        templates = self.template_store.list_active(provider_id)
        result = self.generate(provider_id, start_date, end_date, templates)

        batch = self.availability_store.persist_batch(result.candidates)
        result.created = len(batch.created)
        result.skipped_duplicates = batch.skipped_duplicates
        result.skipped_overlaps = batch.skipped_overlaps

        logger.info(
            'Generated slots for provider %s (%s to %s): created=%s duplicates=%s overlaps=%s errors=%s',
            provider_id,
            start_date.isoformat(),
            end_date.isoformat(),
            result.created,
            result.skipped_duplicates,
            result.skipped_overlaps,
            len(result.errors),
        )
        return result


@dataclass
class ProviderRunFailure:
    provider_id: str
    reason: str


def generate_for_providers(
    provider_ids: Iterable[str],
    start_date: date,
    end_date: date,
    session_factory: Callable[[], Session],
    max_workers: int | None = None,
) -> tuple[list[GenerationResult], list[ProviderRunFailure]]:
    """Generate slots for many providers in parallel, one session per provider."""

    def run(provider_id: str) -> GenerationResult:
        db = session_factory()
        try:
            generator = SlotGenerator(SqlScheduleTemplateStore(db), SqlAvailabilityStore(db))
            return generator.generate_and_persist(provider_id, start_date, end_date)
        finally:
            db.close()

    provider_ids = list(dict.fromkeys(provider_ids))
    results: list[GenerationResult] = []
    failures: list[ProviderRunFailure] = []

    workers = max_workers or config.SLOT_GENERATION_MAX_WORKERS
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        futures = {provider_id: executor.submit(run, provider_id) for provider_id in provider_ids}
        for provider_id, future in futures.items():
            try:
                results.append(future.result())
            except SchedulingError as exc:
                logger.error('Slot generation failed for provider %s: %s', provider_id, exc)
                failures.append(ProviderRunFailure(provider_id=provider_id, reason=str(exc)))
            except Exception as exc:
                logger.exception('Unexpected error generating slots for provider %s', provider_id)
                failures.append(ProviderRunFailure(provider_id=provider_id, reason=str(exc) or exc.__class__.__name__))

    return results, failures
