"""
Outbound member notifications.

The circulation services decide *when* a member should hear about something
(a reserved copy is ready, a loan went overdue, a pickup window lapsed) and
hand the message to a ``Notifier``. Delivery is somebody else's problem: the
default notifier only logs, and deployments plug in email or SMS senders.

Notifiers are called after the transaction commits. A notifier that raises is
logged and ignored; it never undoes the circulation change.
"""

import enum
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    """Kinds of member notification."""

    LOAN_REMINDER = "loan_reminder"
    OVERDUE_NOTICE = "overdue_notice"
    RESERVATION_AVAILABLE = "reservation_available"
    RESERVATION_EXPIRED = "reservation_expired"
    FINE_NOTICE = "fine_notice"


class Notification(BaseModel):
    """A notification handed to a notifier."""

    member_id: int
    notification_type: NotificationType
    subject: str
    message: str
    sent_at: datetime = Field(default_factory=datetime.now)


class Notifier(ABC):
    """Delivery channel for member notifications."""

    @abstractmethod
    def notify(
        self,
        member_id: int,
        notification_type: NotificationType,
        subject: str,
        message: str,
    ) -> None:
        """Deliver one notification."""


class LoggingNotifier(Notifier):
    """Writes notifications to the log instead of delivering them."""

    def notify(self, member_id, notification_type, subject, message):
        logger.info(
            "Notification to member %s [%s] %s: %s",
            member_id,
            NotificationType(notification_type).value,
            subject,
            message,
        )


class RecordingNotifier(Notifier):
    """Keeps every notification in memory, for tests and dry runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: list[Notification] = []

    def notify(self, member_id, notification_type, subject, message):
        with self._lock:
            self.sent.append(
                Notification(
                    member_id=member_id,
                    notification_type=notification_type,
                    subject=subject,
                    message=message,
                )
            )

    def of_type(self, notification_type: NotificationType) -> list[Notification]:
        return [n for n in self.sent if n.notification_type == notification_type]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()
