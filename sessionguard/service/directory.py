from __future__ import annotations

from typing import Callable, Optional, Protocol, TypeVar

from sessionguard.logging import get_logger
from sessionguard.service.errors import ServerError
from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.models import User

logger = get_logger(__name__)

T = TypeVar("T")


class UserDirectory(Protocol):
    def find_by_credential(self, identifier: str) -> Optional[User]: ...

    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def insert(self, user: User) -> User: ...

    def update_fields(self, user_id: str, **fields) -> Optional[User]: ...


def call_directory(operation: str, fn: Callable[..., T], *args, **kwargs) -> T:
    """Run one directory call, surfacing failures as ``ServerError``.

    ``ConstraintViolation`` passes through for the caller to map to a
    conflict. Anything else is logged with its cause and replaced so that
    driver messages and hosts never leave the service layer.
    """
    try:
        return fn(*args, **kwargs)
    except ConstraintViolation:
        raise
    except Exception as exc:
        logger.error(
            "directory_call_failed",
            operation=operation,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise ServerError(
            "user directory unavailable", detail={"operation": operation}
        ) from exc


__all__ = ["UserDirectory", "call_directory"]
