"""
Notification channel

Defines the interface the reminder dispatcher delivers through. Provider
integrations (SMS gateway, email service) live outside this package and
implement ``NotificationChannel``.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from careslot.core.errors import DeliveryError
from careslot.services.recipients import EMAIL, SMS, sms_segments

logger = logging.getLogger(__name__)

SUPPORTED_CHANNELS = (SMS, EMAIL)


@dataclass
class DeliveryReceipt:
    channel: str
    recipient: str
    reference: Optional[str] = None
    accepted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationChannel(ABC):
    """
    Base interface for outbound reminder delivery.

    Implementations raise DeliveryError for any failure the caller should
    record against the reminder.
    """

    @abstractmethod
    def send(self, channel: str, recipient: str, content: str) -> DeliveryReceipt:
        """
        Deliver one message.

        Args:
            channel: "sms" or "email"
            recipient: E.164 phone number or email address
            content: Rendered message body

        Returns:
            DeliveryReceipt from the provider

        Raises:
            DeliveryError: if the provider rejects the message
        """
        pass

    def validate_channel(self, channel: str) -> None:
        if channel not in SUPPORTED_CHANNELS:
            raise DeliveryError(f'Unsupported notification channel: {channel}')


class LoggingNotificationChannel(NotificationChannel):
    """Writes messages to the log instead of a provider; used in development."""

    def send(self, channel: str, recipient: str, content: str) -> DeliveryReceipt:
        self.validate_channel(channel)
        metadata = {'segments': sms_segments(content)} if channel == SMS else {}
        reference = uuid.uuid4().hex
        logger.info('Delivering %s reminder to %s (ref=%s): %s', channel, recipient, reference, content)
        return DeliveryReceipt(
            channel=channel,
            recipient=recipient,
            reference=reference,
            accepted_at=datetime.now(),
            metadata=metadata,
        )
