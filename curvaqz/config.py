from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_QUIZ_API_BASE = "https://clashui.inia.fr/api/quiz/"
DEFAULT_JWT_ISSUER = "curvaqz"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session and quiz-data service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/curvaqz", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and runtime resets.",
    )
    # Token signing. A missing secret is reported per request, never defaulted.
    auth_secret: str | None = env_field(None, "AUTH_SECRET")
    jwt_issuer: str = env_field(DEFAULT_JWT_ISSUER, "JWT_ISSUER")
    jwt_audience: str | None = env_field(None, "JWT_AUDIENCE")
    # Upstream quiz API
    quiz_api_base: str = env_field(DEFAULT_QUIZ_API_BASE, "QUIZ_API_BASE")
    quiz_api_auth: str | None = env_field(
        None,
        "QUIZ_API_AUTH",
        description="Pre-encoded credential sent as 'Authorization: Basic <value>'",
    )
    quiz_api_timeout_seconds: float = env_field(15.0, "QUIZ_API_TIMEOUT_SECONDS")
    qz_cache_ttl: str | None = env_field(
        None,
        "QZ_CACHE_TTL",
        description="Cache TTL override in seconds; invalid values fall back to 3600",
    )
    cors_allow_origins: list[str] = env_field(
        [],
        "CORS_ALLOW_ORIGINS",
        description="Comma-separated list of origins allowed to send credentials",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("redis_url", "auth_secret", "jwt_audience", "quiz_api_auth", "qz_cache_ttl", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("qz_cache_ttl", mode="before")
    @classmethod
    def _stringify_ttl(cls, value: Any) -> Any:
        # Numeric overrides passed programmatically are kept as their text form
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
