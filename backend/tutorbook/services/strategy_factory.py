"""
Notifier factory.
Configures which event delivery strategy the orchestrators use.
"""

from typing import Optional

from tutorbook.core.config import get_settings
from tutorbook.services.interfaces.notifier import Notifier
from tutorbook.services.interfaces.null_notifier import NullNotifier
from tutorbook.services.notification_service import RedisNotifier


def get_notifier_strategy() -> Notifier:
    """
    Build the configured notifier.

    NOTIFIER_BACKEND=redis publishes to Redis pub/sub (the default);
    anything else, or REDIS_ENABLED=false, drops events.
    """
    settings = get_settings()
    if settings.NOTIFIER_BACKEND == "redis" and settings.REDIS_ENABLED:
        return RedisNotifier(settings.EVENTS_CHANNEL)
    return NullNotifier()


# Singleton instance
_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = get_notifier_strategy()
    return _notifier


def set_notifier(notifier: Optional[Notifier]) -> None:
    """Swap the process-wide notifier; None restores the configured one on next use."""
    global _notifier
    _notifier = notifier
