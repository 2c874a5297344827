from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from sessionguard.config import Settings, get_settings, reset_settings_cache
from sessionguard.logging import get_logger
from sessionguard.service.auth import AuthService
from sessionguard.service.passwords import PasswordVerifier
from sessionguard.service.profile_cache import ProfileCache
from sessionguard.service.rate_limit import RateLimiter
from sessionguard.service.revocation import RevocationRegistry
from sessionguard.service.rotation import RefreshRotationEngine
from sessionguard.service.tokens import TokenIssuer
from sessionguard.service.users import UserService
from sessionguard.storage.memory import MemoryStore
from sessionguard.storage.memory_cache import MemoryCache
from sessionguard.storage.postgres import PostgresStore
from sessionguard.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a connection URL with ``***``."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


def _build_cache(settings: Settings):
    if settings.use_memory_cache:
        return MemoryCache()
    redis_error: Exception | None = None
    try:
        cache = RedisCache(settings.redis_url)
        cache.verify_connection()
        return cache
    except Exception as exc:
        redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for refresh tokens, revocation and rate limits; "
            "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error
    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error),
        mode=fallback_mode,
    )
    return MemoryCache()


class Runtime:
    """Holds the wired service instances for the FastAPI app."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            use_memory_cache=self.settings.use_memory_cache,
            test_mode=self.settings.test_mode,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.cache = _build_cache(self.settings)
        self.passwords = PasswordVerifier()
        self.issuer = TokenIssuer(
            self.settings.jwt_secret, ttl_seconds=self.settings.access_token_ttl_seconds
        )
        self.rate_limiter = RateLimiter(self.cache)
        self.revocation = RevocationRegistry(self.cache, self.issuer)
        self.rotation = RefreshRotationEngine(
            self.cache,
            self.store,
            self.issuer,
            self.rate_limiter,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
            grace_seconds=self.settings.rotation_grace_seconds,
            rotation_limit=self.settings.refresh_rate_limit,
            rotation_window_seconds=self.settings.rate_limit_window_seconds,
        )
        self.auth = AuthService(
            self.store, self.passwords, self.issuer, self.rotation, self.revocation
        )
        self.profile_cache = ProfileCache(
            self.cache, ttl_seconds=self.settings.profile_cache_ttl_seconds
        )
        self.users = UserService(self.store, self.profile_cache)

    async def close(self) -> None:
        await self.cache.close()
        pool = getattr(self.store, "pool", None)
        if pool is not None:
            pool.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
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
        if runtime is not None and isinstance(runtime.cache, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.cache.close())
            except RuntimeError:
                asyncio.run(runtime.cache.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime


__all__ = ["Runtime", "get_runtime", "reset_runtime_for_tests"]
