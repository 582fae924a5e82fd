"""
Reminder dispatch

Externally triggered entry point that sends due reminders.

Every reminder is claimed (pending -> sending) with a conditional write
before it is handed to the notification channel, so overlapping runs in
other threads or processes can never deliver the same reminder twice.
Failures are terminal: a failed reminder is recorded and never retried here.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from careslot.core import config
from careslot.core.errors import DeliveryError
from careslot.models.reminder import ScheduledReminder
from careslot.repositories.base import ReminderStore
from careslot.services.notifications import DeliveryReceipt, NotificationChannel

logger = logging.getLogger(__name__)

CLAIM_EXPIRED = 'claim_expired'


@dataclass
class DispatchSummary:
    due: int = 0
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    lost_claims: int = 0
    expired_claims: int = 0


class ReminderDispatcher:
    def __init__(
        self,
        store: ReminderStore,
        channel: NotificationChannel,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        min_interval_seconds: Optional[float] = None,
        send_timeout_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        claim_expiry_minutes: Optional[int] = None,
    ):
        self.store = store
        self.channel = channel
        self.clock = clock
        self.sleep = sleep
        self.monotonic = monotonic
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None else config.REMINDER_DISPATCH_MIN_INTERVAL_SECONDS
        )
        self.send_timeout_seconds = (
            send_timeout_seconds if send_timeout_seconds is not None else config.NOTIFICATION_SEND_TIMEOUT_SECONDS
        )
        self.batch_size = batch_size if batch_size is not None else config.REMINDER_DISPATCH_BATCH_SIZE
        self.claim_expiry_minutes = (
            claim_expiry_minutes if claim_expiry_minutes is not None else config.REMINDER_CLAIM_EXPIRY_MINUTES
        )
        self._last_send_started: Optional[float] = None

    def run_once(self) -> DispatchSummary:
        expired = self.expire_stale_claims()
        summary = self.process_pending_reminders()
        summary.expired_claims = expired
        return summary

    def process_pending_reminders(self) -> DispatchSummary:
        summary = DispatchSummary()
        due = self.store.list_due(self.clock(), self.batch_size)
        summary.due = len(due)

        for reminder in due:
            if not self.store.claim(reminder.id, self.clock()):
                logger.info('Reminder %s was claimed by another dispatcher; skipping.', reminder.id)
                summary.lost_claims += 1
                continue

            summary.claimed += 1
            self._wait_for_rate_limit()

            try:
                receipt = self._send(reminder)
            except DeliveryError as exc:
                logger.warning('Reminder %s delivery failed: %s', reminder.id, exc)
                if self.store.mark_failed(reminder.id, str(exc) or exc.__class__.__name__):
                    summary.failed += 1
                else:
                    logger.warning('Reminder %s failed but its claim had already been closed.', reminder.id)
                continue

            if self.store.mark_sent(reminder.id, self.clock(), receipt.reference):
                summary.sent += 1
            else:
                logger.warning('Reminder %s was delivered but its claim had already been closed.', reminder.id)

        if summary.due:
            logger.info(
                'Reminder dispatch: due=%s claimed=%s sent=%s failed=%s lost_claims=%s',
                summary.due,
                summary.claimed,
                summary.sent,
                summary.failed,
                summary.lost_claims,
            )
        return summary

    def expire_stale_claims(self) -> int:
        """Fail reminders left in ``sending`` by a dispatcher that never finished."""
        cutoff = self.clock() - timedelta(minutes=self.claim_expiry_minutes)
        expired = self.store.expire_claims(cutoff, CLAIM_EXPIRED)
        if expired:
            logger.warning('Marked %s stale reminder claims as failed.', expired)
        return expired

    def _wait_for_rate_limit(self) -> None:
        if self._last_send_started is not None and self.min_interval_seconds > 0:
            elapsed = self.monotonic() - self._last_send_started
            remaining = self.min_interval_seconds - elapsed
            if remaining > 0:
                self.sleep(remaining)
        self._last_send_started = self.monotonic()

    def _send(self, reminder: ScheduledReminder) -> DeliveryReceipt:
        channel, recipient, content = reminder.channel, reminder.recipient, reminder.message_content
        outcome: dict = {}

        def deliver() -> None:
            try:
                outcome['receipt'] = self.channel.send(channel, recipient, content)
            except Exception as exc:
                outcome['error'] = exc

        # Daemon so a hung provider call never keeps the process alive.
        worker = threading.Thread(target=deliver, name=f'reminder-send-{reminder.id}', daemon=True)
        worker.start()
        worker.join(self.send_timeout_seconds)

        if worker.is_alive():
            raise DeliveryError(f'Notification channel timed out after {self.send_timeout_seconds:g} seconds.')

        error = outcome.get('error')
        if isinstance(error, DeliveryError):
            raise error
        if error is not None:
            raise DeliveryError(f'Notification channel error: {error}') from error
        return outcome['receipt']
