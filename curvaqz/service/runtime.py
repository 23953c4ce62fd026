from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from curvaqz.config import get_settings, reset_settings_cache
from curvaqz.logging import get_logger
from curvaqz.service.cache_aside import CacheAsideClient
from curvaqz.service.quiz_api import QuizApiClient
from curvaqz.service.sessions import SessionGateway
from curvaqz.service.tokens import TokenIssuer
from curvaqz.storage.memory import MemoryCache, MemoryStore
from curvaqz.storage.postgres import PostgresStore
from curvaqz.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Union[RedisCache, MemoryCache, None] = self._build_cache()
        self.cache_aside = (
            CacheAsideClient(self.cache, ttl=self.settings.qz_cache_ttl)
            if self.cache is not None
            else None
        )

        self.tokens = TokenIssuer(
            self.settings.auth_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
        )
        if not self.tokens.configured:
            logger.warning("auth_secret_missing", message="token issuance will fail per request")
        self.sessions = SessionGateway(self.store, self.tokens)
        self.quiz_api = QuizApiClient(
            self.settings.quiz_api_base,
            self.settings.quiz_api_auth,
            cache_aside=self.cache_aside,
            timeout=self.settings.quiz_api_timeout_seconds,
        )

    def _build_cache(self) -> Union[RedisCache, MemoryCache, None]:
        fallback_allowed = self.settings.test_mode or self.settings.allow_redis_fallback_dev
        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        if not self.settings.redis_url:
            if fallback_allowed:
                logger.warning("redis_disabled_fallback", error="redis_url_missing", mode=fallback_mode)
                return MemoryCache()
            logger.warning("quiz_cache_disabled", reason="redis_url_missing")
            return None

        cache = RedisCache(self.settings.redis_url)
        try:
            cache.verify_connection()
        except Exception as exc:
            masked = _mask_url_password(self.settings.redis_url)
            if fallback_allowed:
                logger.warning(
                    "redis_disabled_fallback",
                    redis_url=masked,
                    error=str(exc),
                    mode=fallback_mode,
                )
                return MemoryCache()
            # Every cache call degrades to a miss until Redis comes back
            logger.error("redis_unreachable", redis_url=masked, error=str(exc))
        return cache

    async def close(self) -> None:
        await self.quiz_api.aclose()
        if self.cache is not None:
            await self.cache.close()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Close tasks started from inside a running loop, held until they finish
_pending_closes: set[asyncio.Task] = set()


def _close_finished(task: asyncio.Task) -> None:
    _pending_closes.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("runtime_close_failed", error_type=type(exc).__name__, error=str(exc))


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(runtime.close())
            else:
                task = loop.create_task(runtime.close())
                _pending_closes.add(task)
                task.add_done_callback(_close_finished)

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


__all__ = ["Runtime", "get_runtime", "reset_runtime_for_tests"]
