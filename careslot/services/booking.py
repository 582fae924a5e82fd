"""
Booking coordination

Binds appointments to slots and keeps slots and reminders consistent across
booking, cancellation and reschedule.

Ordering rules:
    - book: the slot is bound first; the appointment and its reminders are
      only created once the conditional write has succeeded.
    - cancel: slot release, then reminder cancellation, then the appointment
      status. Every step is idempotent so a retried cancel converges.
    - reschedule: the new slot is bound before the old one is released. A
      conflict on the new slot leaves the old booking untouched.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from careslot.core.errors import BookingConflict, PersistenceError, ValidationError
from careslot.models.appointment import Appointment
from careslot.models.availability import AvailabilitySlot
from careslot.repositories.base import AppointmentRepository, AvailabilityStore
from careslot.services.reminders import ALREADY_SCHEDULED, ReminderScheduler, ScheduleOutcome

logger = logging.getLogger(__name__)

CANCELLED_STATUS = 'cancelled'


@dataclass
class BookingRequest:
    slot_id: int
    patient_id: str
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None
    appointment_type: Optional[str] = None
    provider_name: Optional[str] = None
    notes: Optional[str] = None
    appointment_id: Optional[str] = None


@dataclass
class BookingResult:
    appointment: Appointment
    reminders: ScheduleOutcome = field(default_factory=ScheduleOutcome)


@dataclass
class CancellationResult:
    appointment: Appointment
    reminders_cancelled: int = 0


def slot_bounds(slot: AvailabilitySlot) -> tuple[datetime, datetime]:
    return datetime.combine(slot.date, slot.start_time), datetime.combine(slot.date, slot.end_time)


class BookingCoordinator:
    def __init__(
        self,
        availability: AvailabilityStore,
        appointments: AppointmentRepository,
        reminders: ReminderScheduler,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.availability = availability
        self.appointments = appointments
        self.reminders = reminders
        self.id_factory = id_factory

    def book_appointment(self, request: BookingRequest) -> BookingResult:
        appointment_id = request.appointment_id or self.id_factory()
        slot = self.availability.book(request.slot_id, appointment_id)
        start_time, end_time = slot_bounds(slot)

        appointment = None
        try:
            appointment = self.appointments.add(
                Appointment(
                    id=appointment_id,
                    slot_id=slot.id,
                    provider_id=slot.provider_id,
                    provider_name=request.provider_name,
                    patient_id=request.patient_id,
                    patient_name=request.patient_name,
                    patient_phone=request.patient_phone,
                    patient_email=request.patient_email,
                    appointment_type=request.appointment_type,
                    start_time=start_time,
                    end_time=end_time,
                    status='booked',
                    notes=request.notes,
                )
            )
            outcome = self.reminders.schedule_for(appointment)
        except PersistenceError:
            logger.error('Booking of slot %s for appointment %s failed; releasing slot.', slot.id, appointment_id)
            self._compensate_failed_booking(slot.id, appointment_id, created=appointment is not None)
            raise

        logger.info('Booked slot %s for appointment %s', slot.id, appointment_id)
        return BookingResult(appointment=appointment, reminders=outcome)

    def cancel_appointment(self, appointment_id: str) -> CancellationResult:
        appointment = self.appointments.get(appointment_id)

        for slot in self.availability.list_bound(appointment_id):
            self.availability.release(slot.id, appointment_id)
        cancelled = self.reminders.cancel_for(appointment_id)
        appointment = self.appointments.mark_cancelled(appointment_id)

        return CancellationResult(appointment=appointment, reminders_cancelled=cancelled)

    def reschedule_appointment(self, appointment_id: str, new_slot_id: int) -> BookingResult:
        appointment = self.appointments.get(appointment_id)
        if appointment.status == CANCELLED_STATUS:
            raise ValidationError('Cancelled appointments cannot be rescheduled.')

        if appointment.slot_id == new_slot_id:
            # A retry after a failed old-slot release lands here; finish that release.
            if not self._release_stale_slots(appointment):
                return BookingResult(appointment=appointment)
            return BookingResult(appointment=appointment, reminders=self._refresh_reminders(appointment))

        new_slot = self._book_for_reschedule(new_slot_id, appointment_id)
        old_slot_id = appointment.slot_id
        start_time, end_time = slot_bounds(new_slot)

        try:
            appointment = self.appointments.update_schedule(appointment_id, new_slot.id, start_time, end_time)
        except PersistenceError:
            logger.error('Reschedule of appointment %s failed; releasing new slot %s.', appointment_id, new_slot.id)
            self.availability.release(new_slot.id, appointment_id)
            raise

        if old_slot_id is not None:
            self.availability.release(old_slot_id, appointment_id)

        outcome = self._refresh_reminders(appointment)

        logger.info('Rescheduled appointment %s from slot %s to slot %s', appointment_id, old_slot_id, new_slot.id)
        return BookingResult(appointment=appointment, reminders=outcome)

    def _refresh_reminders(self, appointment: Appointment) -> ScheduleOutcome:
        outcome = self.reminders.reschedule_for(appointment)
        added = self.reminders.schedule_for(appointment)
        outcome.created.extend(added.created)
        outcome.skipped.extend(skip for skip in added.skipped if skip.reason != ALREADY_SCHEDULED)
        return outcome

    def _release_stale_slots(self, appointment: Appointment) -> int:
        """Free slots still bound to the appointment other than its current one."""
        released = 0
        for slot in self.availability.list_bound(appointment.id):
            if slot.id == appointment.slot_id:
                continue
            logger.warning('Releasing slot %s left bound to appointment %s.', slot.id, appointment.id)
            self.availability.release(slot.id, appointment.id)
            released += 1
        return released

    def _book_for_reschedule(self, slot_id: int, appointment_id: str) -> AvailabilitySlot:
        try:
            return self.availability.book(slot_id, appointment_id)
        except BookingConflict:
            # A retried reschedule may find the new slot already bound to this appointment.
            current = self.availability.get(slot_id)
            if current.appointment_id != appointment_id:
                raise
            return current

    def _compensate_failed_booking(self, slot_id: int, appointment_id: str, created: bool) -> None:
        try:
            self.availability.release(slot_id, appointment_id)
            if created:
                self.reminders.cancel_for(appointment_id)
                self.appointments.mark_cancelled(appointment_id)
        except PersistenceError:
            logger.exception('Compensation for appointment %s did not complete.', appointment_id)
