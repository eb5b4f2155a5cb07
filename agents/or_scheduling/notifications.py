"""
Notification sinks for scheduling events.

The orchestrator emits a human-readable Notification after a successful
placement, escalation, approval or cancellation. Delivery is best-effort:
a failing sink is logged and never rolls back the scheduling operation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"
    EMERGENCY = "emergency"


@dataclass
class Notification:
    facility_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    category: str = "schedule"
    surgery_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, object]:
        return {
            "facility_id": self.facility_id,
            "title": self.title,
            "message": self.message,
            "type": self.type.value,
            "category": self.category,
            "surgery_id": self.surgery_id,
            "created_at": self.created_at.isoformat(),
        }


class NotificationSink(ABC):
    @abstractmethod
    def send(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the service log."""

    def send(self, notification: Notification) -> None:
        level = logging.WARNING if notification.type in (
            NotificationType.WARNING, NotificationType.EMERGENCY
        ) else logging.INFO
        logger.log(
            level,
            f"[{notification.category}] {notification.title}: {notification.message}",
        )


class InMemoryNotificationSink(NotificationSink):
    """Keeps the most recent notifications, newest last (used by the API feed)."""

    def __init__(self, max_history: int = 500):
        self._lock = threading.Lock()
        self._items: List[Notification] = []
        self._max_history = max_history

    def send(self, notification: Notification) -> None:
        with self._lock:
            self._items.append(notification)
            if len(self._items) > self._max_history:
                self._items.pop(0)

    def recent(self, limit: int = 50) -> List[Notification]:
        with self._lock:
            return list(self._items[-limit:])


class FanOutNotificationSink(NotificationSink):
    """Delivers to several sinks; one failing sink does not starve the rest."""

    def __init__(self, sinks: List[NotificationSink]):
        self.sinks = list(sinks)

    def send(self, notification: Notification) -> None:
        for sink in self.sinks:
            try:
                sink.send(notification)
            except Exception as e:
                logger.warning(f"Notification sink {type(sink).__name__} failed: {e}")
