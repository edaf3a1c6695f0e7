"""
Notification emitter interface.
Lets the orchestrators announce committed changes without knowing the transport.
"""

from abc import ABC, abstractmethod
from typing import Any, Protocol


class DomainEvent(Protocol):
    def to_dict(self) -> dict[str, Any]:
        ...


class Notifier(ABC):
    """
    Interface for domain-event delivery.

    Implementations:
    - RedisNotifier: publishes JSON to a Redis pub/sub channel
    - NullNotifier: drops events (redis disabled)
    - RecordingNotifier: keeps events in memory for tests and previews

    publish() is called after commit and must never raise into the caller;
    a lost notification never undoes a committed booking.
    """

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """
        Deliver one event.

        Args:
            event: Any object exposing to_dict()
        """
        pass
