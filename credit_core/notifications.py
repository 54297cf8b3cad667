"""
Notification Dispatch Module

Delivers credit lifecycle notifications (credit issued, payment settled,
payment overdue) to users. Delivery is best effort: callers log failures
and never let them affect the money movement that triggered them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import threading

import requests

from .errors import NotificationError
from .storage import to_storage_value


class NotificationKind(Enum):
    """Types of notifications"""
    CREDIT_ISSUED = "credit_issued"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_OVERDUE = "payment_overdue"


SUBJECTS = {
    NotificationKind.CREDIT_ISSUED: "Credit issued",
    NotificationKind.PAYMENT_SETTLED: "Credit payment collected",
    NotificationKind.PAYMENT_OVERDUE: "Overdue credit payment",
}


def render_subject(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    subject = SUBJECTS[kind]
    if 'payment_number' in payload:
        subject = f"{subject} #{payload['payment_number']}"
    return subject


@dataclass
class SentNotification:
    """A notification accepted by a dispatcher"""
    kind: NotificationKind
    recipient: str
    payload: Dict[str, Any]
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationDispatcher(ABC):
    """Abstract base class for notification delivery"""

    @abstractmethod
    def send(self, kind: NotificationKind, recipient: str, payload: Dict[str, Any]) -> None:
        """Deliver a notification. Raises NotificationError on failure."""
        pass


class LogNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the log instead of delivering them"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("credit_core.notifications")

    def send(self, kind: NotificationKind, recipient: str, payload: Dict[str, Any]) -> None:
        self.logger.info(
            f"Notification to {recipient}: {render_subject(kind, payload)}",
            extra={"action": kind.value, "user_id": recipient,
                   "extra": to_storage_value(payload)}
        )


class WebhookNotificationDispatcher(NotificationDispatcher):
    """Webhook dispatcher for external delivery services"""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def send(self, kind: NotificationKind, recipient: str, payload: Dict[str, Any]) -> None:
        """Send notification via webhook POST"""
        body = {
            "type": kind.value,
            "recipient_id": recipient,
            "subject": render_subject(kind, payload),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": to_storage_value(payload)
        }
        try:
            response = requests.post(
                self.url,
                json=body,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            raise NotificationError(f"Webhook send failed: {e}") from e

        if response.status_code >= 300:
            raise NotificationError(f"Webhook returned status {response.status_code}")


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Keeps sent notifications in memory for inspection"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[SentNotification] = []
        self._lock = threading.Lock()

    def send(self, kind: NotificationKind, recipient: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise NotificationError("Delivery disabled")
        with self._lock:
            self.sent.append(SentNotification(kind=kind, recipient=recipient, payload=dict(payload)))

    def of_kind(self, kind: NotificationKind) -> List[SentNotification]:
        with self._lock:
            return [n for n in self.sent if n.kind == kind]


def create_dispatcher(webhook_url: Optional[str] = None, timeout: float = 10.0,
                      logger: Optional[logging.Logger] = None) -> NotificationDispatcher:
    if webhook_url:
        return WebhookNotificationDispatcher(webhook_url, timeout=timeout)
    return LogNotificationDispatcher(logger)
