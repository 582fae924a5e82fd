import re

from careslot.core import config

SMS = 'sms'
EMAIL = 'email'
BOTH = 'both'

_NON_DIGITS = re.compile(r'\D')


def format_phone_number(phone: str | None) -> str | None:
    """Normalise a phone number to E.164, or return None when unusable."""
    if not phone:
        return None

    digits = _NON_DIGITS.sub('', phone)
    if len(digits) < 10 or len(digits) > 15:
        return None

    if len(digits) == 10:
        return f'+{config.DEFAULT_PHONE_COUNTRY_CODE}{digits}'
    return f'+{digits}'


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    if '@' not in normalized:
        return None
    return normalized


def resolve_recipient(preferred_channel: str, phone: str | None, email: str | None) -> tuple[str, str] | None:
    """Pick the channel from whichever contact field is populated.

    The preferred channel wins when its field is usable; otherwise the other
    channel is used. Returns None when neither field is usable.
    """
    candidates = {
        SMS: format_phone_number(phone),
        EMAIL: normalize_email(email),
    }
    order = [SMS, EMAIL] if preferred_channel == SMS else [EMAIL, SMS]
    for channel in order:
        if candidates[channel]:
            return channel, candidates[channel]
    return None


def resolve_recipients(channel: str, phone: str | None, email: str | None) -> list[tuple[str, str]]:
    """Every (channel, address) a rule delivers to; ``both`` fans out to each usable field."""
    if channel == BOTH:
        candidates = [(SMS, format_phone_number(phone)), (EMAIL, normalize_email(email))]
        return [(target, address) for target, address in candidates if address]

    recipient = resolve_recipient(channel, phone, email)
    return [recipient] if recipient is not None else []


def sms_segments(content: str) -> int:
    return max(1, -(-len(content) // 160))
