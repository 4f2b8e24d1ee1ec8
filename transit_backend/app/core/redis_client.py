"""
Redis client initialization and connection management.

The client backs token revocation and the external pub/sub channel that
tracking updates are published to.
"""

import redis.asyncio as redis
from transit_backend.app.core.config import settings


# Create async Redis client (no connection is opened until first command)
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Resolves the module attribute at call time so tests can swap the client.
    """
    return redis_client


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except Exception:
        return False
