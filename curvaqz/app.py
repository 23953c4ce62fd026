from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from curvaqz.api.error_handling import register_exception_handlers
from curvaqz.api.routes import router
from curvaqz.config import Settings
from curvaqz.logging import get_logger, set_correlation_id
from curvaqz.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

PROBE_TIMEOUT_SECONDS = 2.0

# Vite and CRA dev servers; credentials rule out a wildcard
DEV_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)

_RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        get_runtime()
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))
        raise
    logger.info("runtime_ready", version=__version__)
    yield
    try:
        await get_runtime().close()
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))
    else:
        logger.info("runtime_closed")


async def _probe(component: str, check: Callable[[], None]) -> bool:
    """Run a blocking connectivity check off the loop with a deadline."""
    try:
        await asyncio.wait_for(asyncio.to_thread(check), PROBE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("health_probe_timeout", component=component, timeout=PROBE_TIMEOUT_SECONDS)
        return False
    except Exception as exc:
        logger.error("health_probe_failed", component=component, error=str(exc))
        return False
    return True


async def health() -> Dict[str, Any]:
    """Report store, cache and signing-secret state.

    Only a failing store makes the service ``unhealthy``; a dead cache or a
    missing secret leaves it ``degraded``.
    """
    runtime = get_runtime()
    store_ok = await _probe("store", runtime.store.verify_connection)
    checks: Dict[str, Dict[str, Any]] = {
        "store": {
            "status": "healthy" if store_ok else "unhealthy",
            "type": type(runtime.store).__name__,
        }
    }

    cache_ok = True
    if runtime.cache is None:
        checks["cache"] = {"status": "not_configured"}
    else:
        cache_ok = await _probe("cache", runtime.cache.verify_connection)
        checks["cache"] = {
            "status": "healthy" if cache_ok else "unhealthy",
            "type": type(runtime.cache).__name__,
        }

    auth_ok = runtime.tokens.configured
    checks["auth"] = {"status": "healthy" if auth_ok else "misconfigured"}

    if not store_ok:
        status = "unhealthy"
    elif cache_ok and auth_ok:
        status = "healthy"
    else:
        status = "degraded"
    return {
        "status": status,
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    application = FastAPI(title="curvaqz", version=__version__, lifespan=lifespan)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins or list(DEV_ORIGINS),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @application.middleware("http")
    async def request_context(request: Request, call_next):
        """Bind ``X-Request-ID`` (or a generated id) to the logs of this request."""
        request_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        for name, value in _RESPONSE_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    register_exception_handlers(application)
    application.include_router(router)
    application.add_api_route("/healthz", health, methods=["GET"], tags=["health"])
    return application


app = create_app()
