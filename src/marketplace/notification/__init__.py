"""Notification adapter registry.

Provides singleton access to the notification adapter. Uses the fake adapter
by default; a real adapter can be installed with ``set_notifier``.
"""

from marketplace.notification.port import NotificationPort

_notifier: NotificationPort | None = None


def get_notifier() -> NotificationPort:
    """Return the configured notification adapter (singleton)."""
    global _notifier
    if _notifier is None:
        from marketplace.notification.fake_adapter import FakeNotificationAdapter

        _notifier = FakeNotificationAdapter()
    return _notifier


def set_notifier(notifier: NotificationPort):
    global _notifier
    _notifier = notifier


def reset_notifier():
    """Reset the notifier singleton (useful for testing)."""
    global _notifier
    _notifier = None
