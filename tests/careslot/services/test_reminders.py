from datetime import datetime

import pytest

from careslot.core.reminder_rules import DEFAULT_REMINDER_RULES, ReminderRule
from careslot.models import reminder as reminder_status
from careslot.models.appointment import Appointment
from careslot.repositories.sql import SqlReminderStore
from careslot.services.reminders import (
    ALREADY_SCHEDULED,
    APPOINTMENT_IN_PAST,
    BELOW_MIN_LEAD_TIME,
    NO_RECIPIENT,
    RULE_DISABLED,
    ReminderScheduler,
    compute_fire_time,
)

DAY_BEFORE = ReminderRule(
    type='24h',
    offset_minutes=24 * 60,
    channel='sms',
    template='Hi {patientName}, see you {date} at {time} for your {appointmentType} with {provider}. {room}',
)


def make_appointment(**overrides) -> Appointment:
    values = {
        'id': 'appt-1',
        'slot_id': 1,
        'provider_id': 'dr-lee',
        'provider_name': 'Dr. Lee',
        'patient_id': 'patient-7',
        'patient_name': 'Ana Ruiz',
        'patient_phone': '(555) 123-4567',
        'patient_email': 'ana@example.com',
        'appointment_type': 'checkup',
        'start_time': datetime(2024, 1, 25, 14, 0),
        'end_time': datetime(2024, 1, 25, 14, 30),
        'status': 'booked',
    }
    values.update(overrides)
    return Appointment(**values)


@pytest.fixture
def store(db) -> SqlReminderStore:
    return SqlReminderStore(db)


@pytest.fixture
def scheduler(store, clock) -> ReminderScheduler:
    return ReminderScheduler(store, rules=[DAY_BEFORE], clock=clock)


def test_schedule_for_fires_offset_before_appointment(scheduler) -> None:
    outcome = scheduler.schedule_for(make_appointment())

    assert len(outcome.created) == 1
    reminder = outcome.created[0]
    assert reminder.scheduled_for == datetime(2024, 1, 24, 14, 0)
    assert reminder.status == reminder_status.PENDING
    assert reminder.channel == 'sms'
    assert reminder.recipient == '+15551234567'
    assert reminder.patient_id == 'patient-7'
    assert reminder.sent_at is None


def test_schedule_for_renders_context_and_keeps_unknown_placeholders(scheduler) -> None:
    reminder = scheduler.schedule_for(make_appointment()).created[0]

    assert reminder.message_content == (
        'Hi Ana Ruiz, see you Thursday, January 25, 2024 at 2:00 PM for your checkup with Dr. Lee. {room}'
    )


def test_schedule_for_does_not_duplicate_reminders(scheduler, store) -> None:
    scheduler.schedule_for(make_appointment())
    outcome = scheduler.schedule_for(make_appointment())

    assert outcome.created == []
    assert [skip.reason for skip in outcome.skipped] == [ALREADY_SCHEDULED]
    assert len(store.list_for_appointment('appt-1')) == 1


def test_late_reminder_without_floor_is_sent_as_soon_as_possible(store, clock) -> None:
    clock.now = datetime(2024, 1, 25, 8, 0)
    scheduler = ReminderScheduler(store, rules=[DAY_BEFORE], clock=clock)

    reminder = scheduler.schedule_for(make_appointment()).created[0]

    assert reminder.scheduled_for == clock.now


def test_late_reminder_below_floor_is_not_created(store, clock) -> None:
    clock.now = datetime(2024, 1, 25, 13, 45)
    rule = DAY_BEFORE.model_copy(update={'type': '2h', 'offset_minutes': 120, 'min_lead_time_minutes': 30})
    scheduler = ReminderScheduler(store, rules=[rule], clock=clock)

    outcome = scheduler.schedule_for(make_appointment())

    assert outcome.created == []
    assert [(skip.rule_type, skip.reason) for skip in outcome.skipped] == [('2h', BELOW_MIN_LEAD_TIME)]
    assert store.list_for_appointment('appt-1') == []


def test_late_reminder_above_floor_is_created_for_now(store, clock) -> None:
    clock.now = datetime(2024, 1, 25, 12, 30)
    rule = DAY_BEFORE.model_copy(update={'type': '2h', 'offset_minutes': 120, 'min_lead_time_minutes': 30})
    scheduler = ReminderScheduler(store, rules=[rule], clock=clock)

    reminder = scheduler.schedule_for(make_appointment()).created[0]

    assert reminder.scheduled_for == datetime(2024, 1, 25, 12, 30)


@pytest.mark.parametrize(
    ('now', 'expected'),
    [
        (datetime(2024, 1, 20, 9, 0), (datetime(2024, 1, 24, 14, 0), None)),
        (datetime(2024, 1, 25, 14, 0), (None, APPOINTMENT_IN_PAST)),
        (datetime(2024, 1, 25, 13, 0), (None, BELOW_MIN_LEAD_TIME)),
        (datetime(2024, 1, 24, 20, 0), (datetime(2024, 1, 24, 20, 0), None)),
    ],
)
def test_compute_fire_time(now: datetime, expected: tuple) -> None:
    assert compute_fire_time(datetime(2024, 1, 25, 14, 0), 24 * 60, 120, now) == expected


def test_channel_falls_back_to_populated_contact(scheduler) -> None:
    reminder = scheduler.schedule_for(make_appointment(patient_phone=None, patient_email=' Ana@Example.com ')).created[0]

    assert reminder.channel == 'email'
    assert reminder.recipient == 'ana@example.com'


def test_reminder_without_contact_or_disabled_rule_is_skipped(store, clock) -> None:
    disabled = DAY_BEFORE.model_copy(update={'type': 'off', 'enabled': False})
    scheduler = ReminderScheduler(store, rules=[DAY_BEFORE, disabled], clock=clock)

    outcome = scheduler.schedule_for(make_appointment(patient_phone='12', patient_email=None))

    assert [(skip.rule_type, skip.reason) for skip in outcome.skipped] == [
        ('24h', NO_RECIPIENT),
        ('off', RULE_DISABLED),
    ]


def test_reschedule_for_moves_pending_and_leaves_sent_history(scheduler, store, clock) -> None:
    week_before = DAY_BEFORE.model_copy(update={'type': '1w', 'offset_minutes': 7 * 24 * 60})
    clock.now = datetime(2024, 1, 10, 9, 0)
    created = scheduler.schedule_for(make_appointment(), rules=[DAY_BEFORE, week_before]).created
    sent = next(reminder for reminder in created if reminder.rule_type == '1w')
    store.claim(sent.id, clock.now)
    store.mark_sent(sent.id, clock.now, 'ref-1')

    moved = make_appointment(start_time=datetime(2024, 2, 1, 10, 0), end_time=datetime(2024, 2, 1, 10, 30))
    outcome = scheduler.reschedule_for(moved)

    reminders = {reminder.rule_type: reminder for reminder in store.list_for_appointment('appt-1')}
    assert len(outcome.updated) == 1
    assert reminders['24h'].scheduled_for == datetime(2024, 1, 31, 10, 0)
    assert 'Thursday, February 01, 2024 at 10:00 AM' in reminders['24h'].message_content
    assert reminders['1w'].status == reminder_status.SENT
    assert reminders['1w'].scheduled_for == datetime(2024, 1, 18, 14, 0)


def test_reschedule_for_cancels_reminders_that_became_infeasible(store, clock) -> None:
    rule = DAY_BEFORE.model_copy(update={'min_lead_time_minutes': 60})
    scheduler = ReminderScheduler(store, rules=[rule], clock=clock)
    scheduler.schedule_for(make_appointment())

    outcome = scheduler.reschedule_for(
        make_appointment(start_time=datetime(2024, 1, 20, 9, 30), end_time=datetime(2024, 1, 20, 10, 0))
    )

    assert [skip.reason for skip in outcome.skipped] == [BELOW_MIN_LEAD_TIME]
    assert store.list_for_appointment('appt-1')[0].status == reminder_status.CANCELLED


def test_cancel_for_cancels_only_pending_and_is_idempotent(scheduler, store) -> None:
    hour_before = DAY_BEFORE.model_copy(update={'type': '1h', 'offset_minutes': 60})
    created = scheduler.schedule_for(make_appointment(), rules=[DAY_BEFORE, hour_before]).created
    store.claim(created[1].id, datetime(2024, 1, 25, 13, 0))

    assert scheduler.cancel_for('appt-1') == 1
    assert scheduler.cancel_for('appt-1') == 0

    statuses = {reminder.rule_type: reminder.status for reminder in store.list_for_appointment('appt-1')}
    assert statuses == {'24h': reminder_status.CANCELLED, '1h': reminder_status.SENDING}


def test_default_rules() -> None:
    assert [(rule.type, rule.channel, rule.enabled) for rule in DEFAULT_REMINDER_RULES] == [
        ('24h', 'both', True),
        ('2h', 'sms', True),
        ('1w', 'email', False),
    ]
    assert {rule.type: rule.min_lead_time_minutes for rule in DEFAULT_REMINDER_RULES}['2h'] == 30


def test_both_channel_rule_creates_one_reminder_per_contact(store, clock) -> None:
    rule = DAY_BEFORE.model_copy(update={'channel': 'both'})
    scheduler = ReminderScheduler(store, rules=[rule], clock=clock)

    outcome = scheduler.schedule_for(make_appointment())

    assert [(reminder.channel, reminder.recipient) for reminder in outcome.created] == [
        ('sms', '+15551234567'),
        ('email', 'ana@example.com'),
    ]
    assert {reminder.scheduled_for for reminder in outcome.created} == {datetime(2024, 1, 24, 14, 0)}

    again = scheduler.schedule_for(make_appointment())

    assert again.created == []
    assert [(skip.rule_type, skip.reason) for skip in again.skipped] == [('24h', ALREADY_SCHEDULED)]
    assert len(store.list_for_appointment('appt-1')) == 2


def test_both_channel_rule_uses_only_populated_contacts(store, clock) -> None:
    rule = DAY_BEFORE.model_copy(update={'channel': 'both'})
    scheduler = ReminderScheduler(store, rules=[rule], clock=clock)

    outcome = scheduler.schedule_for(make_appointment(patient_email=None))
    added_later = scheduler.schedule_for(make_appointment())

    assert [reminder.channel for reminder in outcome.created] == ['sms']
    assert [reminder.channel for reminder in added_later.created] == ['email']
    assert scheduler.schedule_for(make_appointment(patient_phone=None, patient_email=None)).skipped[0].reason == (
        ALREADY_SCHEDULED
    )
