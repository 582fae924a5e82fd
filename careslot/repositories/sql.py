"""SQLAlchemy implementations of the repository interfaces."""

import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from careslot.core.errors import BookingConflict, NotFoundError, PersistenceError
from careslot.models import reminder as reminder_status
from careslot.models.appointment import Appointment
from careslot.models.availability import AvailabilitySlot
from careslot.models.reminder import ScheduledReminder
from careslot.models.schedule_template import ScheduleTemplate
from careslot.repositories.base import (
    AppointmentRepository,
    AvailabilityStore,
    BatchResult,
    ReminderStore,
    ScheduleTemplateStore,
    SlotCandidate,
)

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'
MAX_ERROR_MESSAGE_LENGTH = 500


@contextmanager
def persistence_guard(db: Session):
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(DATABASE_UNAVAILABLE) from exc


def _overlaps(start_a, end_a, start_b, end_b) -> bool:
    return start_a < end_b and start_b < end_a


class SqlScheduleTemplateStore(ScheduleTemplateStore):
    def __init__(self, db: Session):
        self.db = db

    def save(self, template: ScheduleTemplate) -> ScheduleTemplate:
        with persistence_guard(self.db):
            if template.is_active is None or template.is_active:
                template.is_active = True
                self.db.execute(
                    update(ScheduleTemplate)
                    .where(
                        ScheduleTemplate.provider_id == template.provider_id,
                        ScheduleTemplate.day_of_week == template.day_of_week,
                        ScheduleTemplate.is_active.is_(True),
                    )
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
            self.db.add(template)
            self.db.commit()
            self.db.refresh(template)
            return template

    def list_active(self, provider_id: str) -> dict[int, ScheduleTemplate]:
        with persistence_guard(self.db):
            templates = self.db.query(ScheduleTemplate).filter(
                ScheduleTemplate.provider_id == provider_id,
                ScheduleTemplate.is_active.is_(True),
            ).all()
        return {template.day_of_week: template for template in templates}

    def list_for_provider(self, provider_id: str) -> list[ScheduleTemplate]:
        with persistence_guard(self.db):
            return self.db.query(ScheduleTemplate).filter(
                ScheduleTemplate.provider_id == provider_id,
            ).order_by(ScheduleTemplate.day_of_week.asc(), ScheduleTemplate.id.asc()).all()

    def deactivate(self, template_id: int) -> ScheduleTemplate:
        with persistence_guard(self.db):
            template = self.db.get(ScheduleTemplate, template_id)
            if template is None:
                raise NotFoundError('Schedule template', template_id)
            template.is_active = False
            self.db.commit()
            self.db.refresh(template)
            return template


class SqlAvailabilityStore(AvailabilityStore):
    def __init__(self, db: Session):
        self.db = db

    def persist_batch(self, candidates: Iterable[SlotCandidate]) -> BatchResult:
        result = BatchResult()
        candidates = list(candidates)
        if not candidates:
            return result

        with persistence_guard(self.db):
            occupied = self._load_intervals(candidates)
            accepted: list[AvailabilitySlot] = []

            for candidate in candidates:
                key = (candidate.provider_id, candidate.date)
                intervals = occupied[key]
                if any(start == candidate.start_time for start, _ in intervals):
                    result.skipped_duplicates += 1
                    continue
                if any(_overlaps(candidate.start_time, candidate.end_time, start, end) for start, end in intervals):
                    result.skipped_overlaps += 1
                    continue

                intervals.append((candidate.start_time, candidate.end_time))
                accepted.append(
                    AvailabilitySlot(
                        provider_id=candidate.provider_id,
                        date=candidate.date,
                        start_time=candidate.start_time,
                        end_time=candidate.end_time,
                        is_available=True,
                        appointment_id=None,
                    )
                )

            if not accepted:
                return result

            try:
                self.db.add_all(accepted)
                self.db.commit()
                result.created.extend(accepted)
            except IntegrityError:
                # A concurrent run inserted some of the same starts; fall back to row-by-row.
                self.db.rollback()
                logger.info('Slot batch collided with existing rows; inserting individually.')
                for slot in accepted:
                    fresh = AvailabilitySlot(
                        provider_id=slot.provider_id,
                        date=slot.date,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                        is_available=True,
                        appointment_id=None,
                    )
                    try:
                        self.db.add(fresh)
                        self.db.commit()
                        result.created.append(fresh)
                    except IntegrityError:
                        self.db.rollback()
                        result.skipped_duplicates += 1

        return result

    def _load_intervals(self, candidates: list[SlotCandidate]) -> dict:
        provider_ids = {candidate.provider_id for candidate in candidates}
        dates = {candidate.date for candidate in candidates}
        existing = self.db.query(
            AvailabilitySlot.provider_id,
            AvailabilitySlot.date,
            AvailabilitySlot.start_time,
            AvailabilitySlot.end_time,
        ).filter(
            AvailabilitySlot.provider_id.in_(provider_ids),
            AvailabilitySlot.date.in_(dates),
        ).all()

        occupied: dict = defaultdict(list)
        for provider_id, slot_date, start_time, end_time in existing:
            occupied[(provider_id, slot_date)].append((start_time, end_time))
        return occupied

    def query(
        self,
        provider_id: str,
        start_date: date,
        end_date: date,
        available_only: bool = False,
    ) -> list[AvailabilitySlot]:
        with persistence_guard(self.db):
            slots_query = self.db.query(AvailabilitySlot).filter(
                AvailabilitySlot.provider_id == provider_id,
                AvailabilitySlot.date >= start_date,
                AvailabilitySlot.date <= end_date,
            )
            if available_only:
                slots_query = slots_query.filter(AvailabilitySlot.is_available.is_(True))
            return slots_query.order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()

    def get(self, slot_id: int) -> AvailabilitySlot:
        with persistence_guard(self.db):
            slot = self.db.get(AvailabilitySlot, slot_id)
        if slot is None:
            raise NotFoundError('Slot', slot_id)
        return slot

    def list_bound(self, appointment_id: str) -> list[AvailabilitySlot]:
        with persistence_guard(self.db):
            return (
                self.db.query(AvailabilitySlot)
                .filter(AvailabilitySlot.appointment_id == appointment_id)
                .order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc())
                .all()
            )

    def book(self, slot_id: int, appointment_id: str) -> AvailabilitySlot:
        with persistence_guard(self.db):
            outcome = self.db.execute(
                update(AvailabilitySlot)
                .where(
                    AvailabilitySlot.id == slot_id,
                    AvailabilitySlot.is_available.is_(True),
                    AvailabilitySlot.appointment_id.is_(None),
                )
                .values(is_available=False, appointment_id=appointment_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

        if outcome.rowcount == 1:
            return self.get(slot_id)

        # Only reached after the conditional write lost; the read classifies why.
        self.get(slot_id)
        raise BookingConflict(slot_id)

    def release(self, slot_id: int, appointment_id: Optional[str] = None) -> AvailabilitySlot:
        conditions = [AvailabilitySlot.id == slot_id]
        if appointment_id is not None:
            conditions.append(AvailabilitySlot.appointment_id == appointment_id)

        with persistence_guard(self.db):
            outcome = self.db.execute(
                update(AvailabilitySlot)
                .where(*conditions)
                .values(is_available=True, appointment_id=None)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

        slot = self.get(slot_id)
        if outcome.rowcount == 0 and slot.appointment_id is not None:
            logger.info(
                'Slot %s is bound to appointment %s; release for %s ignored.',
                slot_id,
                slot.appointment_id,
                appointment_id,
            )
        return slot


class SqlAppointmentRepository(AppointmentRepository):
    def __init__(self, db: Session):
        self.db = db

    def add(self, appointment: Appointment) -> Appointment:
        with persistence_guard(self.db):
            self.db.add(appointment)
            self.db.commit()
            self.db.refresh(appointment)
            return appointment

    def get(self, appointment_id: str) -> Appointment:
        with persistence_guard(self.db):
            appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment', appointment_id)
        return appointment

    def update_schedule(
        self,
        appointment_id: str,
        slot_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> Appointment:
        appointment = self.get(appointment_id)
        with persistence_guard(self.db):
            appointment.slot_id = slot_id
            appointment.start_time = start_time
            appointment.end_time = end_time
            self.db.commit()
            self.db.refresh(appointment)
            return appointment

    def mark_cancelled(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        if appointment.status == 'cancelled':
            return appointment
        with persistence_guard(self.db):
            appointment.status = 'cancelled'
            self.db.commit()
            self.db.refresh(appointment)
            return appointment


class SqlReminderStore(ReminderStore):
    def __init__(self, db: Session):
        self.db = db

    def _transition(self, conditions: list, values: dict) -> int:
        with persistence_guard(self.db):
            outcome = self.db.execute(
                update(ScheduledReminder)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        return outcome.rowcount

    def add(self, reminder: ScheduledReminder) -> Optional[ScheduledReminder]:
        with persistence_guard(self.db):
            try:
                self.db.add(reminder)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return None
            self.db.refresh(reminder)
            return reminder

    def get(self, reminder_id: int) -> ScheduledReminder:
        with persistence_guard(self.db):
            reminder = self.db.get(ScheduledReminder, reminder_id)
        if reminder is None:
            raise NotFoundError('Reminder', reminder_id)
        return reminder

    def list_for_appointment(
        self,
        appointment_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[ScheduledReminder]:
        with persistence_guard(self.db):
            reminders_query = self.db.query(ScheduledReminder).filter(
                ScheduledReminder.appointment_id == appointment_id,
            )
            if statuses is not None:
                reminders_query = reminders_query.filter(ScheduledReminder.status.in_(list(statuses)))
            return reminders_query.order_by(ScheduledReminder.scheduled_for.asc(), ScheduledReminder.id.asc()).all()

    def list_due(self, now: datetime, limit: int) -> list[ScheduledReminder]:
        with persistence_guard(self.db):
            return self.db.query(ScheduledReminder).filter(
                ScheduledReminder.status == reminder_status.PENDING,
                ScheduledReminder.scheduled_for <= now,
            ).order_by(
                ScheduledReminder.scheduled_for.asc(),
                ScheduledReminder.id.asc(),
            ).limit(limit).all()

    def claim(self, reminder_id: int, claimed_at: datetime) -> bool:
        return self._transition(
            [ScheduledReminder.id == reminder_id, ScheduledReminder.status == reminder_status.PENDING],
            {'status': reminder_status.SENDING, 'claimed_at': claimed_at},
        ) == 1

    def mark_sent(self, reminder_id: int, sent_at: datetime, delivery_reference: Optional[str]) -> bool:
        return self._transition(
            [ScheduledReminder.id == reminder_id, ScheduledReminder.status == reminder_status.SENDING],
            {
                'status': reminder_status.SENT,
                'sent_at': sent_at,
                'delivery_reference': delivery_reference,
                'error_message': None,
            },
        ) == 1

    def mark_failed(self, reminder_id: int, reason: str) -> bool:
        return self._transition(
            [ScheduledReminder.id == reminder_id, ScheduledReminder.status == reminder_status.SENDING],
            {'status': reminder_status.FAILED, 'error_message': reason[:MAX_ERROR_MESSAGE_LENGTH]},
        ) == 1

    def reschedule_pending(self, reminder_id: int, scheduled_for: datetime, message_content: str) -> bool:
        return self._transition(
            [ScheduledReminder.id == reminder_id, ScheduledReminder.status == reminder_status.PENDING],
            {'scheduled_for': scheduled_for, 'message_content': message_content},
        ) == 1

    def cancel(self, reminder_id: int, reason: str) -> bool:
        return self._transition(
            [ScheduledReminder.id == reminder_id, ScheduledReminder.status == reminder_status.PENDING],
            {'status': reminder_status.CANCELLED, 'error_message': reason[:MAX_ERROR_MESSAGE_LENGTH]},
        ) == 1

    def cancel_pending(self, appointment_id: str, reason: str) -> int:
        return self._transition(
            [
                ScheduledReminder.appointment_id == appointment_id,
                ScheduledReminder.status == reminder_status.PENDING,
            ],
            {'status': reminder_status.CANCELLED, 'error_message': reason[:MAX_ERROR_MESSAGE_LENGTH]},
        )

    def expire_claims(self, claimed_before: datetime, reason: str) -> int:
        return self._transition(
            [
                ScheduledReminder.status == reminder_status.SENDING,
                ScheduledReminder.claimed_at < claimed_before,
            ],
            {'status': reminder_status.FAILED, 'error_message': reason[:MAX_ERROR_MESSAGE_LENGTH]},
        )
