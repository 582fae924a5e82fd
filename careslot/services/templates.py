"""Placeholder rendering for reminder messages."""

import re

from careslot.models.appointment import Appointment

# Matches {name} and {{name}}; the doubled form is consumed whole.
PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*(\w+)\s*\}\}|\{(\w+)\}')


def render_template(template: str, context: dict) -> str:
    """Substitute named placeholders; unknown names are left verbatim."""

    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        value = context.get(name)
        if value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(substitute, template)


def format_appointment_time(value) -> str:
    return value.strftime('%I:%M %p').lstrip('0')


def build_reminder_context(appointment: Appointment) -> dict:
    context = {
        'date': appointment.start_time.strftime('%A, %B %d, %Y'),
        'time': format_appointment_time(appointment.start_time),
    }
    if appointment.patient_name:
        first_name = appointment.patient_name.split()[0]
        context.update(
            patientName=appointment.patient_name,
            patient_name=appointment.patient_name,
            first_name=first_name,
        )
    if appointment.appointment_type:
        context.update(
            appointmentType=appointment.appointment_type,
            appointment_type=appointment.appointment_type,
        )
    if appointment.provider_name:
        context.update(provider=appointment.provider_name, provider_name=appointment.provider_name)

    return context
