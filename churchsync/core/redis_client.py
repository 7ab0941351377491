"""Redis client helpers with connection pooling."""

from __future__ import annotations

DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS = 2.0
DEFAULT_REDIS_HEALTH_CHECK_SECONDS = 30


def create_async_redis_client(url: str | None, *, max_connections: int = 20):
    """Build a pooled ``redis.asyncio`` client, or None when Redis is disabled."""
    if not url:
        return None

    import redis.asyncio as redis

    pool = redis.ConnectionPool.from_url(
        url,
        max_connections=max_connections if max_connections > 0 else 20,
        socket_connect_timeout=DEFAULT_REDIS_CONNECT_TIMEOUT_SECONDS,
        socket_timeout=DEFAULT_REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=DEFAULT_REDIS_HEALTH_CHECK_SECONDS,
        retry_on_timeout=True,
    )
    return redis.Redis(connection_pool=pool)
