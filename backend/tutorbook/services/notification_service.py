"""
Redis pub/sub notifier.

Committed bookings, cancellations, swaps, credit movements and template
applications are published as JSON to ``EVENTS_CHANNEL``. The Telegram bot
and any other listener subscribe there; the core never waits on them.

Message shape:
  {"type": "BookingCreated", "payload": {...}}

Publishing happens after commit. A Redis failure is logged and counted, and
the committed operation stands.
"""

import json

import redis.asyncio as redis

from tutorbook.core.config import get_settings
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import notification_failures
from tutorbook.infrastructure.redis_client import get_redis
from tutorbook.services.interfaces.notifier import DomainEvent, Notifier

logger = get_logger(__name__)
settings = get_settings()


class RedisNotifier(Notifier):
    def __init__(self, channel: str = settings.EVENTS_CHANNEL) -> None:
        self.channel = channel

    async def publish(self, event: DomainEvent) -> None:
        event_type = type(event).__name__
        message = json.dumps({"type": event_type, "payload": event.to_dict()}, default=str)

        client = await get_redis()
        if client is None:
            logger.debug("event_dropped", event_type=event_type, reason="redis_unavailable")
            return

        try:
            receivers = await client.publish(self.channel, message)
        except redis.RedisError as e:
            notification_failures.labels(event_type=event_type).inc()
            logger.error("event_publish_failed", event_type=event_type, error=str(e))
            return

        logger.debug("event_published", event_type=event_type, receivers=receivers)
