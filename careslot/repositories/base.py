"""
Repository interfaces

The scheduling services only talk to storage through these interfaces.
State transitions that must be safe under concurrent callers (slot booking,
reminder claiming) are conditional writes: implementations must perform them
as a single compare-and-swap at the storage layer, never as a read followed
by a write.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Iterable, Optional

from careslot.models.appointment import Appointment
from careslot.models.availability import AvailabilitySlot
from careslot.models.reminder import ScheduledReminder
from careslot.models.schedule_template import ScheduleTemplate


@dataclass(frozen=True)
class SlotCandidate:
    provider_id: str
    date: date
    start_time: time
    end_time: time


@dataclass
class BatchResult:
    created: list[AvailabilitySlot] = field(default_factory=list)
    skipped_duplicates: int = 0
    skipped_overlaps: int = 0


class ScheduleTemplateStore(ABC):
    """Owns the recurring weekly availability rules per provider."""

    @abstractmethod
    def save(self, template: ScheduleTemplate) -> ScheduleTemplate:
        """Store a template, deactivating any active one for the same provider/day."""

    @abstractmethod
    def list_active(self, provider_id: str) -> dict[int, ScheduleTemplate]:
        """Active templates keyed by day of week (0=Sunday)."""

    @abstractmethod
    def list_for_provider(self, provider_id: str) -> list[ScheduleTemplate]:
        pass

    @abstractmethod
    def deactivate(self, template_id: int) -> ScheduleTemplate:
        pass


class AvailabilityStore(ABC):
    """Persists slots and owns the atomic book/release transitions."""

    @abstractmethod
    def persist_batch(self, candidates: Iterable[SlotCandidate]) -> BatchResult:
        """Insert new slots; existing or overlapping ones are skipped, not errors."""

    @abstractmethod
    def query(
        self,
        provider_id: str,
        start_date: date,
        end_date: date,
        available_only: bool = False,
    ) -> list[AvailabilitySlot]:
        """Slots in ``[start_date, end_date]`` ordered by date then start time."""

    @abstractmethod
    def get(self, slot_id: int) -> AvailabilitySlot:
        pass

    @abstractmethod
    def book(self, slot_id: int, appointment_id: str) -> AvailabilitySlot:
        """Bind an open slot; raises BookingConflict when it is already bound."""

    @abstractmethod
    def release(self, slot_id: int, appointment_id: Optional[str] = None) -> AvailabilitySlot:
        """Free a slot. Idempotent.

        When ``appointment_id`` is given the slot is only freed while it is
        still bound to that appointment.
        """

    @abstractmethod
    def list_bound(self, appointment_id: str) -> list[AvailabilitySlot]:
        """Every slot currently bound to ``appointment_id``."""


class AppointmentRepository(ABC):
    """Appointment collaborator; the scheduling core reads and annotates appointments."""

    @abstractmethod
    def add(self, appointment: Appointment) -> Appointment:
        pass

    @abstractmethod
    def get(self, appointment_id: str) -> Appointment:
        pass

    @abstractmethod
    def update_schedule(
        self,
        appointment_id: str,
        slot_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> Appointment:
        pass

    @abstractmethod
    def mark_cancelled(self, appointment_id: str) -> Appointment:
        pass


class ReminderStore(ABC):
    """Persists scheduled reminders and their delivery state machine."""

    @abstractmethod
    def add(self, reminder: ScheduledReminder) -> Optional[ScheduledReminder]:
        """Insert a reminder; returns None when one already exists for the appointment/rule."""

    @abstractmethod
    def get(self, reminder_id: int) -> ScheduledReminder:
        pass

    @abstractmethod
    def list_for_appointment(
        self,
        appointment_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[ScheduledReminder]:
        pass

    @abstractmethod
    def list_due(self, now: datetime, limit: int) -> list[ScheduledReminder]:
        """Pending reminders with ``scheduled_for <= now``, oldest first."""

    @abstractmethod
    def claim(self, reminder_id: int, claimed_at: datetime) -> bool:
        """pending -> sending. Returns False when another caller got there first."""

    @abstractmethod
    def mark_sent(self, reminder_id: int, sent_at: datetime, delivery_reference: Optional[str]) -> bool:
        """sending -> sent."""

    @abstractmethod
    def mark_failed(self, reminder_id: int, reason: str) -> bool:
        """sending -> failed."""

    @abstractmethod
    def reschedule_pending(self, reminder_id: int, scheduled_for: datetime, message_content: str) -> bool:
        """Move a still-pending reminder to a new fire time."""

    @abstractmethod
    def cancel(self, reminder_id: int, reason: str) -> bool:
        """pending -> cancelled for one reminder."""

    @abstractmethod
    def cancel_pending(self, appointment_id: str, reason: str) -> int:
        """pending -> cancelled for every reminder of an appointment."""

    @abstractmethod
    def expire_claims(self, claimed_before: datetime, reason: str) -> int:
        """sending -> failed for claims older than ``claimed_before``."""
