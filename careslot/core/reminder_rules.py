"""Reminder rule configuration."""

import json
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, TypeAdapter, field_validator

from careslot.core import config


class ReminderRule(BaseModel):
    type: str
    offset_minutes: int
    channel: Literal['sms', 'email', 'both'] = 'sms'
    template: str
    min_lead_time_minutes: int | None = None
    enabled: bool = True

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Reminder rule type is required.')
        return normalized

    @field_validator('offset_minutes')
    @classmethod
    def validate_offset(cls, value: int) -> int:
        if value < 0:
            raise ValueError('Reminder offset cannot be negative.')
        return value

    @field_validator('min_lead_time_minutes')
    @classmethod
    def validate_min_lead_time(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Minimum lead time cannot be negative.')
        return value

    @property
    def offset(self) -> timedelta:
        return timedelta(minutes=self.offset_minutes)


DEFAULT_REMINDER_RULES = [
    ReminderRule(
        type='24h',
        offset_minutes=24 * 60,
        channel='both',
        template=(
            'Hi {patientName}, this is a reminder of your {appointmentType} appointment '
            'tomorrow at {time} with {provider}. Please reply CONFIRM or call us to reschedule.'
        ),
    ),
    ReminderRule(
        type='2h',
        offset_minutes=2 * 60,
        channel='sms',
        template='Hi {patientName}, your appointment with {provider} is in 2 hours at {time}. See you soon!',
        min_lead_time_minutes=30,
    ),
    ReminderRule(
        type='1w',
        offset_minutes=7 * 24 * 60,
        channel='email',
        template=(
            'Dear {patientName}, you have an upcoming {appointmentType} appointment '
            'on {date} at {time}. Please confirm your attendance.'
        ),
        min_lead_time_minutes=24 * 60,
        enabled=False,
    ),
]

_rules_adapter = TypeAdapter(list[ReminderRule])


def load_reminder_rules(path: str | None = None) -> list[ReminderRule]:
    rules_path = path if path is not None else config.REMINDER_RULES_PATH
    if not rules_path:
        return list(DEFAULT_REMINDER_RULES)

    with open(rules_path, encoding='utf-8') as rules_file:
        rules = _rules_adapter.validate_python(json.load(rules_file))

    seen: set[str] = set()
    for rule in rules:
        if rule.type in seen:
            raise ValueError(f'Duplicate reminder rule type: {rule.type}')
        seen.add(rule.type)

    return rules
