"""
Async Redis client shared by the balance guard and the OAuth token cache.
Separated from business logic for clean architecture.

Redis is advisory only: callers treat None (disabled or unreachable) as
"run without it", and the database stays authoritative for balances.
"""

from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            await client.ping()
            _redis_client = client
            logger.info("redis_connected", url=settings.REDIS_URL)
        except redis.RedisError as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
