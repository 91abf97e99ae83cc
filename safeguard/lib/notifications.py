"""
Notification delivery.

Delivery is best effort: `send()` logs and counts failures and never lets
them escape into the state transition that triggered the notification.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from safeguard.lib.kafka_client import MessageBroker
from safeguard.lib.metrics import MetricsExporter
from safeguard.models.enums import NotificationType
from safeguard.models.reports import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):

    @abstractmethod
    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """Deliver one notification. May raise on delivery failure."""

    def send(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        try:
            return self.notify(user_id, type, title, message, data)
        except Exception as e:
            logger.warning(f"Notification {type.value} to {user_id} not delivered: {e}")
            MetricsExporter.record_notification_failure(type.value)
            return None


class InMemoryDispatcher(NotificationDispatcher):
    """Keeps notifications in a list; used by tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: List[Notification] = []

    def notify(self, user_id, type, title, message, data=None) -> Notification:
        notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data or {})
        with self._lock:
            self.sent.append(notification)
        return notification

    def for_user(self, user_id: str) -> List[Notification]:
        with self._lock:
            return [n for n in self.sent if n.user_id == user_id]


class RepositoryDispatcher(NotificationDispatcher):
    """Stores notifications in the `report_notifications` collection."""

    def __init__(self, repository):
        self.repository = repository

    def notify(self, user_id, type, title, message, data=None) -> Notification:
        notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data or {})
        return self.repository.insert(notification)


class KafkaDispatcher(NotificationDispatcher):
    """Publishes notifications to the moderation-notifications topic."""

    def __init__(self, broker: MessageBroker):
        self.broker = broker

    def notify(self, user_id, type, title, message, data=None) -> Notification:
        notification = Notification(user_id=user_id, type=type, title=title, message=message, data=data or {})
        if not self.broker.publish_notification(notification.model_dump(mode="json")):
            raise RuntimeError(f"broker rejected notification {notification.id}")
        return notification
