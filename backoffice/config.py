from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from backoffice.logging import get_logger

logger = get_logger(__name__)


class SessionBackend(str, Enum):
    """Where server-side session payloads live."""

    MEMORY = "memory"
    REDIS = "redis"


_SAMESITE_VALUES = {"lax": "Lax", "strict": "Strict", "none": "None"}


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the back-office service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/backoffice", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    redis_url: str | None = env_field(None, "REDIS_URL")
    session_backend: SessionBackend = env_field(
        SessionBackend.MEMORY,
        "SESSION_BACKEND",
        description="Server-side session storage: memory or redis",
    )
    session_lifetime_minutes: int = env_field(
        15,
        "SESSION_LIFETIME",
        description="Idle minutes before an authenticated session expires",
    )
    session_cookie_name: str = env_field("BACKOFFICESESSID", "SESSION_COOKIE_NAME")
    session_cookie_secure: bool = env_field(False, "SESSION_COOKIE_SECURE")
    session_cookie_httponly: bool = env_field(True, "SESSION_COOKIE_HTTPONLY")
    session_cookie_samesite: str = env_field("Lax", "SESSION_COOKIE_SAMESITE")
    session_cookie_path: str = env_field("/", "SESSION_COOKIE_PATH")
    session_cookie_domain: str | None = env_field(None, "SESSION_COOKIE_DOMAIN")
    session_use_strict_mode: bool = env_field(
        False,
        "SESSION_USE_STRICT_MODE",
        description="Never adopt unknown client-supplied session identifiers",
    )
    rate_limit_attempts: int = env_field(
        3,
        "RATE_LIMIT_ATTEMPTS",
        description="Failed logins per address before the address is blocked",
    )
    rate_limit_minutes: int = env_field(
        15, "RATE_LIMIT_MINUTES", description="Block duration in minutes"
    )
    superadmin_allowed_ips: list[str] = env_field(
        [],
        "SUPERADMIN_ALLOWED_IPS",
        description="Addresses or CIDR networks superadmins may log in from; empty allows all",
    )
    app_debug: bool = env_field(False, "APP_DEBUG")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (runtime resets).",
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

    @property
    def session_lifetime_seconds(self) -> int:
        return self.session_lifetime_minutes * 60

    @field_validator("session_backend")
    @classmethod
    def _validate_session_backend(cls, value: SessionBackend) -> SessionBackend:
        return SessionBackend(value)

    @field_validator("session_lifetime_minutes", "rate_limit_attempts", "rate_limit_minutes")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("session_cookie_samesite")
    @classmethod
    def _normalize_samesite(cls, value: str) -> str:
        normalized = _SAMESITE_VALUES.get(str(value).strip().lower())
        if not normalized:
            raise ValueError("SESSION_COOKIE_SAMESITE must be Lax, Strict or None")
        return normalized

    @field_validator("superadmin_allowed_ips", mode="before")
    @classmethod
    def _split_ip_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return list(value)

    @field_validator("session_cookie_domain", "redis_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            session_backend=_settings_cache.session_backend.value,
            use_memory_store=_settings_cache.use_memory_store,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
