"""
Reminder scheduling

Reminders fire relative to the appointment: ``scheduled_for`` is the
appointment start minus the rule offset. When that moment has already
passed at creation time the rule's ``min_lead_time_minutes`` decides:

    - no floor declared: the reminder is created for "now" and goes out on
      the next dispatcher pass
    - floor declared and the appointment is closer than the floor: the
      reminder is not created and the reason is reported
    - floor declared and satisfied: created for "now"
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from careslot.core.reminder_rules import ReminderRule, load_reminder_rules
from careslot.models import reminder as reminder_status
from careslot.models.appointment import Appointment
from careslot.models.reminder import ScheduledReminder
from careslot.repositories.base import ReminderStore
from careslot.services.recipients import BOTH, resolve_recipients
from careslot.services.templates import build_reminder_context, render_template

logger = logging.getLogger(__name__)

RULE_DISABLED = 'rule_disabled'
ALREADY_SCHEDULED = 'already_scheduled'
NO_RECIPIENT = 'no_recipient'
APPOINTMENT_IN_PAST = 'appointment_in_past'
BELOW_MIN_LEAD_TIME = 'below_min_lead_time'
APPOINTMENT_CANCELLED = 'appointment_cancelled'


@dataclass
class SkippedReminder:
    rule_type: str
    reason: str


@dataclass
class ScheduleOutcome:
    created: list[ScheduledReminder] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    skipped: list[SkippedReminder] = field(default_factory=list)


def compute_fire_time(
    appointment_start: datetime,
    offset_minutes: int,
    min_lead_time_minutes: Optional[int],
    now: datetime,
) -> tuple[Optional[datetime], Optional[str]]:
    """Return ``(scheduled_for, None)`` or ``(None, reason)`` when infeasible."""
    if appointment_start <= now:
        return None, APPOINTMENT_IN_PAST

    scheduled_for = appointment_start - timedelta(minutes=offset_minutes)
    if scheduled_for > now:
        return scheduled_for, None

    if min_lead_time_minutes is not None and appointment_start - now < timedelta(minutes=min_lead_time_minutes):
        return None, BELOW_MIN_LEAD_TIME

    return now, None


class ReminderScheduler:
    def __init__(
        self,
        store: ReminderStore,
        rules: Optional[list[ReminderRule]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.rules = rules if rules is not None else load_reminder_rules()
        self.clock = clock

    def schedule_for(self, appointment: Appointment, rules: Optional[list[ReminderRule]] = None) -> ScheduleOutcome:
        outcome = ScheduleOutcome()
        now = self.clock()
        context = build_reminder_context(appointment)
        existing = {
            (reminder.rule_type, reminder.channel) for reminder in self.store.list_for_appointment(appointment.id)
        }

        for rule in rules if rules is not None else self.rules:
            reason = None
            scheduled_for = None
            targets = []

            if not rule.enabled:
                reason = RULE_DISABLED
            else:
                scheduled = {channel for rule_type, channel in existing if rule_type == rule.type}
                targets = resolve_recipients(rule.channel, appointment.patient_phone, appointment.patient_email)
                if scheduled and (rule.channel != BOTH or all(channel in scheduled for channel, _ in targets)):
                    reason = ALREADY_SCHEDULED
                elif not targets:
                    reason = NO_RECIPIENT
                else:
                    targets = [target for target in targets if target[0] not in scheduled]
                    scheduled_for, reason = compute_fire_time(
                        appointment.start_time,
                        rule.offset_minutes,
                        rule.min_lead_time_minutes,
                        now,
                    )

            if reason is not None:
                self._record_skip(outcome, appointment, rule.type, reason)
                continue

            content = render_template(rule.template, context)
            added = False
            for channel, address in targets:
                created = self.store.add(
                    ScheduledReminder(
                        appointment_id=appointment.id,
                        patient_id=appointment.patient_id,
                        rule_type=rule.type,
                        offset_minutes=rule.offset_minutes,
                        min_lead_time_minutes=rule.min_lead_time_minutes,
                        channel=channel,
                        recipient=address,
                        message_template=rule.template,
                        message_content=content,
                        scheduled_for=scheduled_for,
                        status=reminder_status.PENDING,
                    )
                )
                if created is None:
                    continue
                existing.add((rule.type, channel))
                outcome.created.append(created)
                added = True

            if not added:
                self._record_skip(outcome, appointment, rule.type, ALREADY_SCHEDULED)

        return outcome

    def reschedule_for(self, appointment: Appointment) -> ScheduleOutcome:
        """Recompute fire times of still-pending reminders; sent history is untouched."""
        outcome = ScheduleOutcome()
        now = self.clock()
        context = build_reminder_context(appointment)

        for reminder in self.store.list_for_appointment(appointment.id, statuses=[reminder_status.PENDING]):
            scheduled_for, reason = compute_fire_time(
                appointment.start_time,
                reminder.offset_minutes,
                reminder.min_lead_time_minutes,
                now,
            )
            if reason is not None:
                if self.store.cancel(reminder.id, reason):
                    self._record_skip(outcome, appointment, reminder.rule_type, reason)
                continue

            content = render_template(reminder.message_template, context)
            if self.store.reschedule_pending(reminder.id, scheduled_for, content):
                outcome.updated.append(reminder.id)

        return outcome

    def cancel_for(self, appointment_id: str, reason: str = APPOINTMENT_CANCELLED) -> int:
        cancelled = self.store.cancel_pending(appointment_id, reason)
        if cancelled:
            logger.info('Cancelled %s pending reminders for appointment %s', cancelled, appointment_id)
        return cancelled

    def _record_skip(self, outcome: ScheduleOutcome, appointment: Appointment, rule_type: str, reason: str) -> None:
        logger.info('Reminder %s for appointment %s not scheduled: %s', rule_type, appointment.id, reason)
        outcome.skipped.append(SkippedReminder(rule_type=rule_type, reason=reason))
