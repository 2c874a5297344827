from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sessionguard.logging import get_logger

logger = get_logger(__name__)

MIN_JWT_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process configuration for the token service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/sessionguard", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    server_host: str = env_field("0.0.0.0", "SERVER_HOST")
    server_port: int = env_field(3000, "SERVER_PORT")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    use_memory_cache: bool = env_field(False, "USE_MEMORY_CACHE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and in-process fallbacks.",
    )

    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    access_token_ttl_seconds: int = env_field(
        3600, "ACCESS_TOKEN_TTL_SECONDS", description="Access token lifetime"
    )
    refresh_token_ttl_seconds: int = env_field(
        7 * 24 * 3600,
        "REFRESH_TOKEN_TTL_SECONDS",
        description="Refresh token lifetime while unused",
    )
    rotation_grace_seconds: int = env_field(
        10,
        "ROTATION_GRACE_SECONDS",
        description="How long a consumed refresh token is remembered as used",
    )
    profile_cache_ttl_seconds: int = env_field(
        24 * 3600, "PROFILE_CACHE_TTL_SECONDS"
    )

    # Fixed-window throttles, requests per window per subject
    rate_limit_window_seconds: int = env_field(60, "RATE_LIMIT_WINDOW_SECONDS")
    login_rate_limit: int = env_field(5, "LOGIN_RATE_LIMIT")
    register_rate_limit: int = env_field(5, "REGISTER_RATE_LIMIT")
    refresh_rate_limit: int = env_field(10, "REFRESH_RATE_LIMIT")
    read_me_rate_limit: int = env_field(60, "READ_ME_RATE_LIMIT")
    update_me_rate_limit: int = env_field(10, "UPDATE_ME_RATE_LIMIT")

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

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator(
        "access_token_ttl_seconds",
        "refresh_token_ttl_seconds",
        "rotation_grace_seconds",
        "profile_cache_ttl_seconds",
    )
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("TTL values must be positive")
        return value

    @model_validator(mode="after")
    def _require_jwt_secret(self) -> "Settings":
        if self.jwt_secret and len(self.jwt_secret) >= MIN_JWT_SECRET_LENGTH:
            return self
        if self.test_mode:
            logger.warning("jwt_secret_weak_in_test_mode")
            if not self.jwt_secret:
                self.jwt_secret = "sessionguard-test-mode-secret-" + "x" * MIN_JWT_SECRET_LENGTH
            return self
        raise ValueError(
            f"JWT_SECRET must be set and at least {MIN_JWT_SECRET_LENGTH} characters"
        )


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
