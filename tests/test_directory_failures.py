"""User directory outages surface as server errors, never as driver exceptions."""
from unittest.mock import patch

import pytest

from sessionguard.service.auth import AuthService
from sessionguard.service.directory import call_directory
from sessionguard.service.errors import DuplicateIdentityError, ServerError
from sessionguard.service.passwords import PasswordVerifier
from sessionguard.service.profile_cache import ProfileCache
from sessionguard.service.rate_limit import RateLimiter
from sessionguard.service.revocation import RevocationRegistry
from sessionguard.service.rotation import RefreshRotationEngine, refresh_key
from sessionguard.service.tokens import TokenIssuer
from sessionguard.service.users import UserService
from sessionguard.storage.errors import ConstraintViolation

SECRET = "unit-test-signing-secret-0123456789abcdef"


class UnreachableDirectory:
    """Directory whose every call fails the way a dropped database connection does."""

    def _down(self, *args, **kwargs):
        raise ConnectionError("db down at 10.0.0.5:5432")

    find_by_id = _down
    find_by_credential = _down
    insert = _down
    update_fields = _down


@pytest.fixture
def directory():
    return UnreachableDirectory()


@pytest.fixture
def issuer():
    return TokenIssuer(SECRET)


@pytest.fixture
def rotation(cache, directory, issuer):
    return RefreshRotationEngine(
        cache, directory, issuer, RateLimiter(cache), refresh_ttl_seconds=3600
    )


@pytest.fixture
def auth_service(cache, directory, issuer, rotation):
    return AuthService(
        directory,
        PasswordVerifier(),
        issuer,
        rotation,
        RevocationRegistry(cache, issuer),
    )


def _assert_wrapped(excinfo):
    assert isinstance(excinfo.value, ServerError)
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert "10.0.0.5" not in excinfo.value.public_message


async def test_rotation_lookup_failure(rotation, cache):
    await cache.set_with_ttl(refresh_key("tok"), "u-1", 3600)

    with pytest.raises(ServerError) as excinfo:
        await rotation.rotate("tok")
    _assert_wrapped(excinfo)
    assert await cache.get(refresh_key("tok")) == "u-1"


async def test_login_lookup_failure(auth_service):
    with pytest.raises(ServerError) as excinfo:
        await auth_service.login("alice", "secret1")
    _assert_wrapped(excinfo)


def test_register_insert_failure(auth_service):
    with pytest.raises(ServerError) as excinfo:
        auth_service.register("alice", "secret1")
    _assert_wrapped(excinfo)


async def test_profile_read_and_update_failures(cache, directory):
    service = UserService(directory, ProfileCache(cache))

    with pytest.raises(ServerError) as read_exc:
        await service.get_profile("u-1")
    with pytest.raises(ServerError) as update_exc:
        await service.update_profile("u-1", phone="13800138000")
    _assert_wrapped(read_exc)
    _assert_wrapped(update_exc)


def test_failure_is_logged_with_operation():
    def down():
        raise ConnectionError("db down")

    with patch("sessionguard.service.directory.logger") as mock_logger:
        with pytest.raises(ServerError):
            call_directory("find_by_id", down)

    kwargs = mock_logger.error.call_args[1]
    assert kwargs["operation"] == "find_by_id"
    assert kwargs["error_type"] == "ConnectionError"


def test_constraint_violation_passes_through():
    def duplicate():
        raise ConstraintViolation("username already exists", {"field": "username"})

    with pytest.raises(ConstraintViolation):
        call_directory("insert", duplicate)


def test_register_conflict_still_maps_to_duplicate(cache, issuer, rotation):
    class DuplicateDirectory(UnreachableDirectory):
        def insert(self, user):
            raise ConstraintViolation("username already exists", {"field": "username"})

    service = AuthService(
        DuplicateDirectory(), PasswordVerifier(), issuer, rotation, RevocationRegistry(cache, issuer)
    )
    with pytest.raises(DuplicateIdentityError):
        service.register("alice", "secret1")
