from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper holding upstream quiz-data responses."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before the cache is handed to services."""
        # A short-lived sync client keeps the async pool off the startup loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


__all__ = ["RedisCache"]
