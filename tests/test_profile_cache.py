"""Tests for the cache-aside profile cache and the user service built on it."""
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from sessionguard.service.errors import DuplicateIdentityError, NotFoundError, ValidationError
from sessionguard.service.profile_cache import ProfileCache, profile_key
from sessionguard.service.users import UserService
from sessionguard.storage.errors import StoreUnavailable
from sessionguard.storage.memory import MemoryStore
from sessionguard.storage.models import User, UserProfile, UserRole


def _profile(**overrides):
    values = {
        "id": "u-1",
        "username": "alice",
        "phone": "13800138000",
        "role": UserRole.USER,
        "is_active": True,
        "created_at": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return UserProfile(**values)


def _broken_store():
    store = AsyncMock()
    for method in ("get", "set_with_ttl", "delete"):
        getattr(store, method).side_effect = StoreUnavailable(method)
    return store


class CountingFetch:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


class TestReadThrough:
    async def test_miss_fetches_and_populates(self, cache):
        profiles = ProfileCache(cache, ttl_seconds=300)
        fetch = CountingFetch(_profile())

        assert await profiles.read_through("k", fetch) == _profile()
        assert fetch.calls == 1
        assert await cache.ttl("k") == 300

    async def test_hit_skips_fetch(self, cache):
        profiles = ProfileCache(cache)
        fetch = CountingFetch(_profile())
        await profiles.read_through("k", fetch)

        assert await profiles.read_through("k", fetch) == _profile()
        assert fetch.calls == 1

    async def test_write_through_then_read_skips_fetch(self, cache):
        profiles = ProfileCache(cache)
        written = _profile(phone="13900139000")
        await profiles.write_through("k", written)
        fetch = CountingFetch(_profile())

        assert await profiles.read_through("k", fetch) == written
        assert fetch.calls == 0

    async def test_store_outage_still_returns_fetched_value(self):
        profiles = ProfileCache(_broken_store())
        fetch = CountingFetch(_profile())

        with patch("sessionguard.service.profile_cache.logger") as mock_logger:
            assert await profiles.read_through("k", fetch) == _profile()

        assert fetch.calls == 1
        events = [call[0][0] for call in mock_logger.warning.call_args_list]
        assert events == ["profile_cache_read_failed", "profile_cache_write_failed"]

    async def test_corrupt_entry_treated_as_miss_and_repaired(self, cache):
        profiles = ProfileCache(cache)
        await cache.set_with_ttl("k", "{not json", 60)
        fetch = CountingFetch(_profile())

        assert await profiles.read_through("k", fetch) == _profile()
        assert json.loads(await cache.get("k"))["username"] == "alice"

    async def test_entry_expires_after_ttl(self, cache, clock):
        profiles = ProfileCache(cache, ttl_seconds=60)
        fetch = CountingFetch(_profile())
        await profiles.read_through("k", fetch)
        clock.advance(60)

        await profiles.read_through("k", fetch)
        assert fetch.calls == 2

    async def test_fetch_errors_propagate(self, cache):
        async def missing():
            raise NotFoundError("gone")

        with pytest.raises(NotFoundError):
            await ProfileCache(cache).read_through("k", missing)

    async def test_custom_codec(self, cache):
        profiles = ProfileCache(cache, encode=json.dumps, decode=json.loads)
        await profiles.write_through("k", {"a": 1})

        assert await profiles.read_through("k", CountingFetch(None)) == {"a": 1}


class TestWriteAndInvalidate:
    async def test_write_through_swallows_outage(self):
        await ProfileCache(_broken_store()).write_through("k", _profile())

    async def test_unencodable_value_not_written(self, cache):
        await ProfileCache(cache).write_through("k", object())
        assert await cache.get("k") is None

    async def test_invalidate_forces_refetch(self, cache):
        profiles = ProfileCache(cache)
        fetch = CountingFetch(_profile())
        await profiles.read_through("k", fetch)
        await profiles.invalidate("k")
        await profiles.read_through("k", fetch)

        assert fetch.calls == 2

    async def test_invalidate_swallows_outage(self):
        await ProfileCache(_broken_store()).invalidate("k")


class TestUserService:
    @pytest.fixture
    def directory(self):
        return MemoryStore()

    @pytest.fixture
    def service(self, directory, cache):
        return UserService(directory, ProfileCache(cache))

    async def test_profile_served_from_cache_after_first_read(self, service, directory, cache):
        user = directory.insert(User(id="", username="alice", password_hash="x"))
        await service.get_profile(user.id)

        # Out-of-band change is invisible until TTL or write-through
        directory.users[user.id].phone = "13700137000"
        profile = await service.get_profile(user.id)
        assert profile.phone is None
        assert await cache.get(profile_key(user.id)) is not None

    async def test_update_writes_through(self, service, directory):
        user = directory.insert(User(id="", username="alice", password_hash="x"))
        await service.get_profile(user.id)
        await service.update_profile(user.id, phone="13800138000")

        assert (await service.get_profile(user.id)).phone == "13800138000"

    async def test_empty_update_keeps_phone(self, service, directory, cache):
        user = directory.insert(
            User(id="", username="alice", password_hash="x", phone="13800138000")
        )
        await cache.set_with_ttl(profile_key(user.id), "{not json", 60)

        profile = await service.update_profile(user.id)

        assert profile.phone == "13800138000"
        assert directory.find_by_id(user.id).phone == "13800138000"
        assert (await service.get_profile(user.id)).phone == "13800138000"

    async def test_explicit_null_clears_phone(self, service, directory):
        user = directory.insert(
            User(id="", username="alice", password_hash="x", phone="13800138000")
        )

        profile = await service.update_profile(user.id, phone=None)
        assert profile.phone is None

    async def test_unknown_profile_field_rejected(self, service, directory):
        user = directory.insert(User(id="", username="alice", password_hash="x"))

        with pytest.raises(ValidationError):
            await service.update_profile(user.id, role="admin")
        assert directory.find_by_id(user.id).role == UserRole.USER

    async def test_duplicate_phone_conflict(self, service, directory):
        directory.insert(User(id="", username="bob", password_hash="x", phone="13800138000"))
        alice = directory.insert(User(id="", username="alice", password_hash="x"))

        with pytest.raises(DuplicateIdentityError):
            await service.update_profile(alice.id, phone="13800138000")

    async def test_missing_user_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.get_profile("missing")
        with pytest.raises(NotFoundError):
            await service.update_profile("missing", phone=None)
