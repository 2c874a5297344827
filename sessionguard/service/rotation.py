from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from sessionguard.logging import get_logger
from sessionguard.service.directory import call_directory
from sessionguard.service.errors import (
    InactiveAccountError,
    InvalidTokenError,
    ServerError,
    TokenReusedError,
    UnknownSubjectError,
)
from sessionguard.service.rate_limit import RateLimiter
from sessionguard.service.tokens import TokenIssuer
from sessionguard.storage.errors import StoreUnavailable
from sessionguard.storage.models import User

logger = get_logger(__name__)

REFRESH_PREFIX = "refresh_token:"
USED_MARKER = "USED:"
ROTATION_ACTION = "refresh_token"


def refresh_key(token: str) -> str:
    return f"{REFRESH_PREFIX}{token}"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class RefreshRotationEngine:
    """Single-use refresh tokens stored as one key each.

    A key holds ``<subject>`` while LIVE and ``USED:<subject>`` after its
    first rotation; the used marker keeps only a short grace TTL. The
    LIVE to USED transition is a compare-and-set, so among concurrent
    rotations of the same token exactly one wins and every other caller
    sees reuse.
    """

    def __init__(
        self,
        store,
        directory,
        issuer: TokenIssuer,
        limiter: RateLimiter,
        *,
        refresh_ttl_seconds: int,
        grace_seconds: int = 10,
        rotation_limit: int = 10,
        rotation_window_seconds: int = 60,
    ) -> None:
        self.store = store
        self.directory = directory
        self.issuer = issuer
        self.limiter = limiter
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.grace_seconds = grace_seconds
        self.rotation_limit = rotation_limit
        self.rotation_window_seconds = rotation_window_seconds

    async def begin_session(self, subject_id: str) -> str:
        token = str(uuid.uuid4())
        try:
            await self.store.set_with_ttl(refresh_key(token), subject_id, self.refresh_ttl_seconds)
        except StoreUnavailable as exc:
            logger.error("refresh_token_store_failed", user_id=subject_id, error=str(exc))
            raise ServerError("could not persist refresh token") from exc
        return token

    async def issue_pair(self, user: User, *, now: Optional[float] = None) -> TokenPair:
        access = self.issuer.issue(user, now=now)
        refresh = await self.begin_session(user.id)
        return TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=self.issuer.ttl_seconds,
        )

    async def _load(self, key: str) -> str:
        try:
            stored = await self.store.get(key)
        except StoreUnavailable as exc:
            logger.error("refresh_token_lookup_failed", error=str(exc))
            raise ServerError("refresh token lookup failed") from exc
        if stored is None:
            raise InvalidTokenError("refresh token unknown or expired")
        return stored

    async def rotate(
        self, old_token: str, *, now: Optional[float] = None
    ) -> Tuple[User, TokenPair]:
        key = refresh_key(old_token)
        stored = await self._load(key)

        if stored.startswith(USED_MARKER):
            subject_id = stored[len(USED_MARKER):]
            logger.warning("refresh_token_reused", user_id=subject_id)
            raise TokenReusedError(
                "refresh token presented after rotation", detail={"user_id": subject_id}
            )
        subject_id = stored
        if not subject_id.strip():
            logger.error("refresh_token_value_malformed")
            raise ServerError("refresh token record is malformed")

        await self.limiter.check(
            ROTATION_ACTION, subject_id, self.rotation_limit, self.rotation_window_seconds
        )

        user = call_directory("find_by_id", self.directory.find_by_id, subject_id)
        if user is None:
            raise UnknownSubjectError("refresh token subject not found", detail={"user_id": subject_id})
        if not user.is_active:
            raise InactiveAccountError("refresh token subject inactive", detail={"user_id": subject_id})

        try:
            won = await self.store.compare_and_set(
                key, subject_id, f"{USED_MARKER}{subject_id}", self.grace_seconds
            )
        except StoreUnavailable as exc:
            logger.error("refresh_token_consume_failed", user_id=subject_id, error=str(exc))
            raise ServerError("could not consume refresh token") from exc
        if not won:
            logger.warning("refresh_token_rotation_lost_race", user_id=subject_id)
            raise TokenReusedError(
                "refresh token consumed by a concurrent rotation",
                detail={"user_id": subject_id},
            )

        pair = await self.issue_pair(user, now=now)
        logger.info("refresh_token_rotated", user_id=subject_id)
        return user, pair


__all__ = ["RefreshRotationEngine", "TokenPair", "refresh_key", "USED_MARKER"]
