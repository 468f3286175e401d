"""Notification port: abstract interface for order event dispatch."""

from abc import ABC, abstractmethod
from enum import Enum


class NotificationEvent(Enum):
    NEW_ORDER = "new-order"
    ORDER_STATUS_UPDATE = "order-status-update"
    ORDER_CANCELLED = "order-cancelled"


class NotificationPort(ABC):
    """Fire-and-forget delivery of order events to a user."""

    @abstractmethod
    def publish(self, event: str, recipient_id: str, payload: dict) -> dict:
        """Deliver ``event`` to ``recipient_id``.

        Adapters raise ``ExternalDependencyError`` when the channel is down.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...
