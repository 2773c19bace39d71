"""Shared Redis store connection helpers.

The store is the single source of truth for every counter, flag and rate
limit window. The client is created once per pipeline and passed to each
component explicitly.
"""

import asyncio
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from edgeguard.app.core.config import Settings
from edgeguard.app.core.logging import get_logger

logger = get_logger(__name__)

# Errors that mean "the store did not answer": treated as a store failure
STORE_EXCEPTIONS = (
    redis.RedisError,
    asyncio.TimeoutError,
    OSError,
)


def create_redis_client(config: Settings) -> Optional[aioredis.Redis]:
    """Create the Redis client for the filter, or None when not configured.

    Creating the client does not connect; the first command does.
    """
    if not config.store_configured:
        return None
    return aioredis.from_url(
        config.redis_url,
        decode_responses=True,
        socket_timeout=config.redis_socket_timeout,
        socket_connect_timeout=config.redis_connect_timeout,
    )


async def ping_store(client: Any, timeout: float) -> bool:
    """Return True when the store answers a PING within ``timeout`` seconds."""
    try:
        return bool(await asyncio.wait_for(client.ping(), timeout=timeout))
    except STORE_EXCEPTIONS as e:
        logger.warning(f"Redis ping failed: {e!r}")
        return False


async def close_store(client: Any) -> None:
    # Use aclose() for proper async cleanup in redis-py 5.0+
    if client is not None:
        await client.aclose()
