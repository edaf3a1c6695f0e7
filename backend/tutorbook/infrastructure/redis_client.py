"""
Redis client shared by the lesson cache and the event notifier.
Separated from business logic for clean architecture.
"""

from typing import Optional

import redis.asyncio as redis

from tutorbook.core.config import get_settings
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()


class RedisClient:
    """Lazily connected singleton with connection pooling."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> Optional[redis.Redis]:
        """Get or create the client. Returns None if Redis is disabled or unreachable."""
        if not settings.REDIS_ENABLED:
            return None

        if cls._instance is None:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            try:
                await client.ping()
            except redis.RedisError as e:
                redis_connection_errors.inc()
                logger.error("redis_connection_failed", error=str(e))
                await client.aclose()
                return None
            logger.info("redis_connected", url=settings.REDIS_URL)
            cls._instance = client

        return cls._instance

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection on shutdown."""
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None


# Convenience functions
async def get_redis() -> Optional[redis.Redis]:
    return await RedisClient.get_client()


async def close_redis() -> None:
    await RedisClient.close()
