"""Error taxonomy shared by the scheduling services.

Each error is recovered at the unit it belongs to (one template day, one
slot, one reminder) except ``PersistenceError``, which aborts the current
operation and reaches the caller.
"""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(SchedulingError):
    """Malformed template, time bounds or request input."""


class BookingConflict(SchedulingError):
    """The slot is already bound to an appointment."""

    def __init__(self, slot_id: int, message: str | None = None):
        self.slot_id = slot_id
        super().__init__(message or f'Slot {slot_id} is no longer available.')


class NotFoundError(SchedulingError):
    """A referenced slot, appointment or reminder does not exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f'{entity} {identifier} not found.')


class DeliveryError(SchedulingError):
    """The notification channel failed or timed out."""


class PersistenceError(SchedulingError):
    """The storage layer failed."""
