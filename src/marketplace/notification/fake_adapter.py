"""Fake notification adapter: records published events for testing."""

from uuid import uuid4

from marketplace.exceptions import ExternalDependencyError
from marketplace.notification.port import NotificationPort


class FakeNotificationAdapter(NotificationPort):
    """Records events in memory. Can be told to fail or to raise."""

    def __init__(self):
        self.published: list[dict] = []
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"

    def configure(
        self,
        should_succeed: bool = True,
        should_raise: bool = False,
        failure_reason: str = "Notification delivery failed",
    ):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.should_raise = should_raise
        self.failure_reason = failure_reason

    def publish(self, event: str, recipient_id: str, payload: dict) -> dict:
        if self.should_raise:
            raise ExternalDependencyError(self.failure_reason, notification=event, recipient_id=str(recipient_id))
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"notification-{uuid4().hex[:12]}"
        self.published.append(
            {
                "message_id": message_id,
                "event": event,
                "recipient_id": str(recipient_id),
                "payload": payload,
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def events_for(self, recipient_id) -> list[dict]:
        return [record for record in self.published if record["recipient_id"] == str(recipient_id)]

    def reset(self):
        """Clear published events (useful between tests)."""
        self.published.clear()
        self.should_succeed = True
        self.should_raise = False
        self.failure_reason = "Notification delivery failed"
