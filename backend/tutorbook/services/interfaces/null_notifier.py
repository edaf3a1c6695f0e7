"""
In-process notifiers with no external transport.
"""

from tutorbook.services.interfaces.notifier import DomainEvent, Notifier


class NullNotifier(Notifier):
    """
    Drops every event.

    Use when:
    - Redis is disabled
    - Nobody subscribes to booking notifications
    """

    async def publish(self, event: DomainEvent) -> None:
        """No-op - nothing listens."""
        pass


class RecordingNotifier(Notifier):
    """Keeps published events in order, in memory."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()
