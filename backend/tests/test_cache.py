"""Tests for the resolved-matrix cache (against an in-memory fake Redis)."""

import fnmatch

import pytest
import pytest_asyncio
import redis.asyncio as redis

from app.config import settings
from app.schemas.permissions import PermissionChange
from app.services import mutations, resolver
from app.utils import cache
from app.utils.cache import (
    get_cached,
    invalidate_cache,
    invalidate_employee,
    matrix_cache_key,
    set_cached,
)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache helpers."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        self._check()
        for key in keys:
            self.store.pop(key, None)
        return len(keys)


@pytest_asyncio.fixture
async def fake_redis(monkeypatch) -> FakeRedis:
    client = FakeRedis()

    async def _get_redis():
        return client

    monkeypatch.setattr(cache, "get_redis", _get_redis)
    monkeypatch.setattr(settings, "permission_cache_enabled", True)
    return client


@pytest.mark.cache
@pytest.mark.asyncio
class TestCacheUtility:

    async def test_key_embeds_generation(self):
        assert matrix_cache_key("emp-1", 3) == "perm:matrix:emp-1:v3"

    async def test_set_and_get(self, fake_redis):
        await set_cached("perm:matrix:emp-1:v0", "{}")
        assert await get_cached("perm:matrix:emp-1:v0") == "{}"
        assert await get_cached("perm:matrix:emp-1:v1") is None

    async def test_invalidate_pattern(self, fake_redis):
        await set_cached("perm:matrix:emp-1:v0", "a")
        await set_cached("perm:matrix:emp-1:v1", "b")
        await set_cached("perm:matrix:emp-2:v0", "c")

        assert await invalidate_cache("perm:matrix:emp-1:*") == 2
        assert list(fake_redis.store) == ["perm:matrix:emp-2:v0"]

        await invalidate_employee("emp-2")
        assert fake_redis.store == {}

    async def test_redis_failure_is_a_miss(self, fake_redis):
        fake_redis.fail = True
        await set_cached("perm:matrix:emp-1:v0", "x")
        assert await get_cached("perm:matrix:emp-1:v0") is None
        assert await invalidate_cache("perm:matrix:*") == 0

    async def test_disabled_cache_never_touches_redis(self, fake_redis, monkeypatch):
        monkeypatch.setattr(settings, "permission_cache_enabled", False)
        await set_cached("perm:matrix:emp-1:v0", "x")
        assert fake_redis.store == {}


@pytest.mark.cache
@pytest.mark.integration
@pytest.mark.asyncio
class TestMatrixCaching:

    async def test_resolve_populates_cache(self, db_session, cashier, fake_redis):
        matrix = await resolver.resolve(db_session, cashier.id)
        key = matrix_cache_key(cashier.id, 0)
        assert key in fake_redis.store

        # A tampered entry proves the second read is served from the cache
        cached = matrix.model_copy(update={"employee_id": "from-cache"})
        fake_redis.store[key] = cached.model_dump_json()
        again = await resolver.resolve(db_session, cashier.id)
        assert again.employee_id == "from-cache"

    async def test_mutation_invalidates_and_moves_generation(
        self, db_session, cashier, admin, fake_redis
    ):
        await resolver.resolve(db_session, cashier.id)
        assert matrix_cache_key(cashier.id, 0) in fake_redis.store

        await mutations.apply_bulk_change(
            db_session, cashier.id,
            [PermissionChange(permission_key="pos.delete", granted=False)],
            reason="Till audit", actor_id=admin.id,
        )
        assert not any(k.startswith(f"perm:matrix:{cashier.id}:") for k in fake_redis.store)

        matrix = (await resolver.resolve(db_session, cashier.id)).as_dict()
        assert matrix["pos.delete"] is False
        assert matrix_cache_key(cashier.id, 1) in fake_redis.store

    async def test_stale_generation_is_never_read(self, db_session, cashier, admin, fake_redis):
        stale = await resolver.resolve(db_session, cashier.id)
        stale_json = stale.model_dump_json()

        await mutations.apply_bulk_change(
            db_session, cashier.id,
            [PermissionChange(permission_key="pos.delete", granted=False)],
            reason="Till audit", actor_id=admin.id,
        )
        # Even if an old generation reappears it is not the current key
        fake_redis.store[matrix_cache_key(cashier.id, 0)] = stale_json

        matrix = (await resolver.resolve(db_session, cashier.id)).as_dict()
        assert matrix["pos.delete"] is False

    async def test_redis_down_falls_back_to_database(self, db_session, cashier, fake_redis):
        fake_redis.fail = True
        matrix = await resolver.resolve(db_session, cashier.id)
        assert matrix.as_dict()["pos.access"] is True
