from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from typing import Dict, Optional

from sessionguard.logging import get_logger
from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.models import User, UserRole, utcnow

_WRITABLE_FIELDS = {"phone", "role", "is_active"}


class MemoryStore:
    """Process-local user directory for tests and single-process development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock so helpers can re-enter while a write holds the lock
        self._data_lock = threading.RLock()

    def _check_unique(self, user_id: str, username: str, phone: Optional[str]) -> None:
        for existing in self.users.values():
            if existing.id == user_id:
                continue
            if existing.username == username:
                raise ConstraintViolation("username already exists", {"field": "username"})
            if phone is not None and existing.phone == phone:
                raise ConstraintViolation("phone already exists", {"field": "phone"})

    def insert(self, user: User) -> User:
        with self._data_lock:
            if not user.id:
                user = replace(user, id=str(uuid.uuid4()))
            self._check_unique(user.id, user.username, user.phone)
            stored = replace(user)
            self.users[stored.id] = stored
            self.logger.info("user_created", user_id=stored.id, role=stored.role.value)
            return replace(stored)

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def find_by_credential(self, identifier: str) -> Optional[User]:
        """Match an account identifier against username first, then phone."""
        with self._data_lock:
            for user in self.users.values():
                if user.username == identifier:
                    return replace(user)
            for user in self.users.values():
                if user.phone is not None and user.phone == identifier:
                    return replace(user)
            return None

    def update_fields(self, user_id: str, **fields) -> Optional[User]:
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not writable: {sorted(unknown)}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if "phone" in fields:
                self._check_unique(user.id, user.username, fields["phone"])
            if "role" in fields:
                fields["role"] = UserRole(fields["role"])
            updated = replace(user, **fields, updated_at=utcnow())
            self.users[user_id] = updated
            return replace(updated)


__all__ = ["MemoryStore"]
