from __future__ import annotations

from sessionguard.logging import get_logger
from sessionguard.service.errors import RateLimitedError, ServerError
from sessionguard.storage.errors import StoreUnavailable

logger = get_logger(__name__)

RATE_LIMIT_PREFIX = "rate_limit:"
DEFAULT_WINDOW_SECONDS = 60


def rate_limit_key(action: str, subject: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{action}:{subject}"


class RateLimiter:
    """Fixed-window counter per ``(action, subject)``.

    The first increment in a window sets the key's expiry in the same
    atomic store call; later increments leave it alone, so the window
    resets only when the key expires. Bursts straddling a boundary can
    reach twice the limit.
    """

    def __init__(self, store) -> None:
        self.store = store

    async def check(
        self, action: str, subject: str, limit: int, window_seconds: int
    ) -> int:
        """Count one attempt; raise ``RateLimitedError`` once the limit is exceeded.

        Returns the attempt number within the current window, or 0 when the
        limit is disabled (``limit <= 0``).
        """
        if limit <= 0:
            return 0
        if window_seconds <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                action=action,
                window_seconds=window_seconds,
            )
            window_seconds = DEFAULT_WINDOW_SECONDS
        key = rate_limit_key(action, subject)
        try:
            count = await self.store.incr_with_expire(key, window_seconds)
        except StoreUnavailable as exc:
            logger.error("rate_limit_store_failed", action=action, error=str(exc))
            raise ServerError("rate limit counter unavailable") from exc
        if count > limit:
            logger.info(
                "rate_limit_exceeded",
                action=action,
                subject=subject,
                count=count,
                limit=limit,
            )
            raise RateLimitedError(
                f"rate limit exceeded for {action}; try again in {window_seconds} seconds",
                detail={"retry_after": window_seconds, "action": action},
            )
        return count


__all__ = ["RateLimiter", "rate_limit_key"]
