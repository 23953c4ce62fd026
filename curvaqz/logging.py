from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

_request_id: ContextVar[Optional[str]] = ContextVar("curvaqz_request_id", default=None)

# Substrings of event keys whose values never reach the log sink verbatim
_SENSITIVE_MARKERS = ("secret", "token", "authorization", "auth", "cookie", "password")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return _request_id.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current request context."""
    value = correlation_id or uuid.uuid4().hex
    _request_id.set(value)
    return value


def _with_request_id(_, __, event: Dict[str, Any]) -> Dict[str, Any]:
    request_id = _request_id.get()
    if request_id and "correlation_id" not in event:
        event["correlation_id"] = request_id
    return event


def _mask(value: Any) -> Any:
    if isinstance(value, str):
        return value[:2] + "***" + value[-2:] if len(value) > 4 else "***"
    if isinstance(value, dict):
        return {key: _mask(item) for key, item in value.items()}
    return value


def _mask_sensitive(_, __, event: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in event.items():
        if key == "event":
            continue
        if any(marker in key.lower() for marker in _SENSITIVE_MARKERS):
            event[key] = _mask(value)
    return event


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    dev_mode: Optional[bool] = None,
) -> None:
    """Install the structlog pipeline.

    Unset arguments come from ``LOG_LEVEL``, ``LOG_JSON`` and ``LOG_DEV_MODE``.
    JSON lines are the default; ``LOG_DEV_MODE`` switches to the coloured
    console renderer.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "true").lower() in _TRUE_VALUES
    if dev_mode is None:
        dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in _TRUE_VALUES

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _with_request_id,
        _mask_sensitive,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
