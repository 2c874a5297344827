from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class MemoryCache:
    """In-process stand-in for RedisCache with the same async surface.

    Entries are ``(value, expires_at)`` pairs evaluated lazily against
    ``clock``. Every method runs under one lock, which gives the same
    single-key atomicity the Redis Lua scripts provide. Tests pass a
    controllable clock to move windows and TTLs forward.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            if self._live(key) is None:
                return None
            return max(0, int(round(self._entries[key][1] - self._clock())))

    async def incr_with_expire(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                self._entries[key] = ("1", self._clock() + int(ttl_seconds))
                return 1
            count = int(current) + 1
            self._entries[key] = (str(count), self._entries[key][1])
            return count

    async def compare_and_set(
        self, key: str, expected: str, value: str, ttl_seconds: int
    ) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            self._entries[key] = (value, self._clock() + max(1, int(ttl_seconds)))
            return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["MemoryCache"]
