from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from sessionguard.storage.errors import StoreUnavailable


class RedisCache:
    """Thin Redis wrapper for refresh tokens, the revocation list, counters and cached profiles."""

    # INCR and, only on the first hit of a window, EXPIRE; one atomic round trip
    _INCR_WITH_EXPIRE_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return current
"""

    # Overwrite value and TTL only while the key still holds the expected value
    _COMPARE_AND_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current == ARGV[1] then
  redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
  return 1
end
return 0
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        if client is None:
            client = aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self.client = client
        self._incr_with_expire = self.client.register_script(self._INCR_WITH_EXPIRE_SCRIPT)
        self._compare_and_set = self.client.register_script(self._COMPARE_AND_SET_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        # Short-lived sync client so the async client is not bound to a startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise StoreUnavailable("get", exc) from exc

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            raise StoreUnavailable("set", exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as exc:
            raise StoreUnavailable("delete", exc) from exc

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as exc:
            raise StoreUnavailable("exists", exc) from exc

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in seconds, ``None`` for missing or persistent keys."""
        try:
            remaining = await self.client.ttl(key)
        except RedisError as exc:
            raise StoreUnavailable("ttl", exc) from exc
        return remaining if remaining is not None and remaining >= 0 else None

    async def incr_with_expire(self, key: str, ttl_seconds: int) -> int:
        try:
            count = await self._incr_with_expire(keys=[key], args=[int(ttl_seconds)])
        except RedisError as exc:
            raise StoreUnavailable("incr_with_expire", exc) from exc
        return int(count)

    async def compare_and_set(
        self, key: str, expected: str, value: str, ttl_seconds: int
    ) -> bool:
        try:
            swapped = await self._compare_and_set(
                keys=[key], args=[expected, value, max(1, int(ttl_seconds))]
            )
        except RedisError as exc:
            raise StoreUnavailable("compare_and_set", exc) from exc
        return bool(int(swapped))

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


__all__ = ["RedisCache"]
