from __future__ import annotations

from typing import Optional

from sessionguard.logging import get_logger
from sessionguard.service.directory import call_directory
from sessionguard.service.errors import DuplicateIdentityError, NotFoundError, ValidationError
from sessionguard.service.profile_cache import ProfileCache, profile_key
from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.models import User, UserProfile

logger = get_logger(__name__)

_PROFILE_FIELDS = {"phone"}


class UserService:
    def __init__(self, directory, cache: ProfileCache) -> None:
        self.directory = directory
        self.cache = cache

    def _require(self, user_id: str, user: Optional[User]) -> User:
        if user is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return user

    async def get_profile(self, user_id: str) -> UserProfile:
        async def fetch() -> UserProfile:
            user = call_directory("find_by_id", self.directory.find_by_id, user_id)
            return UserProfile.from_user(self._require(user_id, user))

        return await self.cache.read_through(profile_key(user_id), fetch)

    async def update_profile(self, user_id: str, **changes) -> UserProfile:
        """Apply only the fields present in ``changes``.

        An empty update leaves the row untouched and refreshes the cached
        profile from the directory.
        """
        unknown = set(changes) - _PROFILE_FIELDS
        if unknown:
            raise ValidationError("profile fields not writable", detail={"fields": sorted(unknown)})
        try:
            if changes:
                user = call_directory(
                    "update_fields", self.directory.update_fields, user_id, **changes
                )
            else:
                user = call_directory("find_by_id", self.directory.find_by_id, user_id)
        except ConstraintViolation as exc:
            raise DuplicateIdentityError("phone already exists", detail=exc.detail) from exc
        profile = UserProfile.from_user(self._require(user_id, user))
        await self.cache.write_through(profile_key(user_id), profile)
        logger.info("profile_updated", user_id=user_id, fields=sorted(changes))
        return profile

    async def set_role(self, user_id: str, role) -> UserProfile:
        user = call_directory("update_fields", self.directory.update_fields, user_id, role=role)
        profile = UserProfile.from_user(self._require(user_id, user))
        await self.cache.write_through(profile_key(user_id), profile)
        return profile


__all__ = ["UserService"]
