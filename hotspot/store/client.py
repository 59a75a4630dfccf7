"""
Store Client Management - async Redis connection factory.

The client is created once in the application lifespan and handed to every
component that needs it. Nothing else opens connections.
"""

from redis.asyncio import Redis

from hotspot.config import Settings


def create_store(settings: Settings) -> Redis:
    """Create the shared async Redis client (connections open lazily)."""
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        health_check_interval=30,
    )


async def close_store(store: Redis) -> None:
    """Close the client and its connection pool (for graceful shutdown)."""
    await store.aclose()
