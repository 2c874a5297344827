from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from sessionguard.logging import get_logger
from sessionguard.storage.errors import StoreUnavailable
from sessionguard.storage.models import UserProfile

logger = get_logger(__name__)

PROFILE_PREFIX = "cache:user:profile:"

T = TypeVar("T")


def profile_key(user_id: str) -> str:
    return f"{PROFILE_PREFIX}{user_id}"


def _encode_profile(profile: UserProfile) -> str:
    return json.dumps(profile.to_dict(), separators=(",", ":"))


def _decode_profile(raw: str) -> UserProfile:
    return UserProfile.from_dict(json.loads(raw))


class ProfileCache(Generic[T]):
    """Cache-aside reads and write-through updates over the shared store.

    The cache is never the source of truth. Any store or codec failure is
    logged and treated as a miss (reads) or dropped (writes); only errors
    raised by the caller's ``fetch`` reach the caller.
    """

    def __init__(
        self,
        store,
        *,
        ttl_seconds: int = 86400,
        encode: Callable[[Any], str] = _encode_profile,
        decode: Callable[[str], Any] = _decode_profile,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._encode = encode
        self._decode = decode

    async def read_through(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        *,
        ttl: Optional[int] = None,
    ) -> T:
        try:
            raw = await self.store.get(key)
        except StoreUnavailable as exc:
            logger.warning("profile_cache_read_failed", key=key, error=str(exc))
            raw = None
        if raw is not None:
            try:
                return self._decode(raw)
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("profile_cache_decode_failed", key=key, error=str(exc))

        value = await fetch()
        await self.write_through(key, value, ttl=ttl)
        return value

    async def write_through(self, key: str, value: T, *, ttl: Optional[int] = None) -> None:
        try:
            raw = self._encode(value)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("profile_cache_encode_failed", key=key, error=str(exc))
            return
        try:
            await self.store.set_with_ttl(key, raw, ttl or self.ttl_seconds)
        except StoreUnavailable as exc:
            logger.warning("profile_cache_write_failed", key=key, error=str(exc))

    async def invalidate(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except StoreUnavailable as exc:
            logger.warning("profile_cache_invalidate_failed", key=key, error=str(exc))


__all__ = ["ProfileCache", "profile_key"]
