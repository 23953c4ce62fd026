from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from curvaqz.logging import get_logger
from curvaqz.storage.common import KeyValueCache

DEFAULT_CACHE_TTL_SECONDS = 60 * 60

T = TypeVar("T")

logger = get_logger(__name__)


def resolve_cache_ttl(raw: Union[str, int, None]) -> int:
    """Return ``raw`` as a positive TTL in seconds, or the one-hour default."""
    if raw is None or isinstance(raw, bool):
        return DEFAULT_CACHE_TTL_SECONDS
    if isinstance(raw, int):
        return raw if raw > 0 else DEFAULT_CACHE_TTL_SECONDS
    try:
        parsed = int(str(raw).strip())
    except ValueError:
        return DEFAULT_CACHE_TTL_SECONDS
    return parsed if parsed > 0 else DEFAULT_CACHE_TTL_SECONDS


class CacheAsideClient:
    """Read-through wrapper whose cache backend may fail without breaking callers.

    A hit returns the decoded JSON value. Misses, expired entries, undecodable
    entries and backend read errors all fall through to ``fetcher``. Fetched
    values other than ``None`` are written back with the configured TTL; a
    failed write is logged and the value is still returned. Errors raised by
    ``fetcher`` itself propagate unchanged.
    """

    def __init__(self, cache: KeyValueCache, ttl: Union[str, int, None] = None) -> None:
        self.cache = cache
        self.ttl_seconds = resolve_cache_ttl(ttl)

    async def _read(self, key: str) -> tuple[bool, Any]:
        try:
            raw = await self.cache.get(key)
        except Exception as exc:
            logger.warning("cache_read_failed", key=key, error=str(exc))
            return (False, None)
        if raw is None:
            return (False, None)
        try:
            return (True, json.loads(raw))
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("cache_read_failed", key=key, error=str(exc))
            return (False, None)

    async def _write(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
            await self.cache.set(key, encoded, self.ttl_seconds)
        except Exception as exc:
            logger.warning("cache_write_failed", key=key, error=str(exc))

    async def fetch_with_cache(
        self, key: str, fetcher: Callable[[], Awaitable[Optional[T]]]
    ) -> Optional[T]:
        hit, value = await self._read(key)
        if hit:
            logger.debug("cache_hit", key=key)
            return value
        fresh = await fetcher()
        if fresh is not None:
            await self._write(key, fresh)
        return fresh


__all__ = ["CacheAsideClient", "DEFAULT_CACHE_TTL_SECONDS", "resolve_cache_ttl"]
