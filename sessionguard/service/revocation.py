from __future__ import annotations

import time
from typing import Optional

from sessionguard.logging import get_logger
from sessionguard.service.errors import ServerError
from sessionguard.service.tokens import TokenIssuer
from sessionguard.storage.errors import StoreUnavailable

logger = get_logger(__name__)

BLACKLIST_PREFIX = "blacklist:token:"
REVOKED_SENTINEL = "logout"


def blacklist_key(raw_token: str) -> str:
    return f"{BLACKLIST_PREFIX}{raw_token}"


class RevocationRegistry:
    """Blacklist of access tokens revoked before their natural expiry.

    Entries live exactly as long as the token they revoke would have, so
    the list never grows beyond the set of still-valid tokens.
    """

    def __init__(self, store, issuer: TokenIssuer) -> None:
        self.store = store
        self.issuer = issuer

    async def revoke(self, raw_token: str, *, now: Optional[float] = None) -> None:
        expires_at = self.issuer.peek_expiry(raw_token)
        if expires_at is None:
            logger.info("revoke_skipped_unreadable_token")
            return
        current = now if now is not None else time.time()
        # truncate so the entry never outlives the token
        remaining = int(expires_at - current)
        if remaining <= 0:
            return
        try:
            await self.store.set_with_ttl(blacklist_key(raw_token), REVOKED_SENTINEL, remaining)
        except StoreUnavailable as exc:
            logger.error("revoke_store_failed", error=str(exc))
            raise ServerError("could not record token revocation") from exc

    async def is_revoked(self, raw_token: str) -> bool:
        try:
            return await self.store.exists(blacklist_key(raw_token))
        except StoreUnavailable as exc:
            # Fail closed: an unanswerable revocation check never reads as "not revoked"
            logger.error("revocation_check_failed", error=str(exc))
            raise ServerError("revocation status unavailable") from exc


__all__ = ["RevocationRegistry", "blacklist_key"]
