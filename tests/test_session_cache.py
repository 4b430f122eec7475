"""Tests for the session cache adapters.

The Redis adapter is exercised against an in-process fake client so no
server is needed; the memory adapter shares the fake clock with the
authority fixtures.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sessionauth.service.errors import UpstreamUnavailableError
from sessionauth.storage.models import SessionRecord
from sessionauth.storage.session_cache import (
    ACCESS_KEY_PREFIX,
    REFRESH_KEY_PREFIX,
    RedisSessionCache,
    cache_key,
)


class FakeRedis:
    """Subset of redis.asyncio.Redis used by the cache adapter."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


class DownRedis(FakeRedis):
    async def set(self, key, value, ex=None):
        raise RedisConnectionError("Error 111 connecting to redis://:hunter2@cache:6379")

    async def get(self, key):
        raise RedisConnectionError("Connection refused")

    async def delete(self, key):
        raise TimeoutError("timed out")


class TestCacheKey:
    def test_raw_token_not_in_key(self):
        key = cache_key(ACCESS_KEY_PREFIX, "header.payload.signature")

        assert key.startswith("user_session:")
        assert "payload" not in key
        assert len(key) == len("user_session:") + 64

    def test_namespaces_differ(self):
        token = "header.payload.signature"
        assert cache_key(ACCESS_KEY_PREFIX, token) != cache_key(REFRESH_KEY_PREFIX, token)


class TestSessionRecord:
    def test_encoding(self):
        assert SessionRecord(subject_id=5).encode() == '{"subjectId":5}'

    def test_decode_bytes(self):
        assert SessionRecord.decode(b'{"subjectId":5}').subject_id == 5

    @pytest.mark.parametrize(
        "raw", ["[]", '{"subjectId":"5"}', '{"subjectId":true}', "{}", "not json"]
    )
    def test_decode_rejects(self, raw):
        with pytest.raises(ValueError):
            SessionRecord.decode(raw)


class TestMemorySessionCache:
    async def test_put_get_delete(self, session_cache):
        await session_cache.put("k", SessionRecord(subject_id=1))

        assert (await session_cache.get("k")).subject_id == 1
        assert await session_cache.delete("k") is True
        assert await session_cache.delete("k") is False
        assert await session_cache.get("k") is None

    async def test_entry_without_ttl_never_expires(self, session_cache, clock):
        await session_cache.put("k", SessionRecord(subject_id=1))
        clock.advance(days=30)

        assert await session_cache.get("k") is not None
        assert session_cache.ttl("k") is None

    async def test_entry_expires_after_ttl(self, session_cache, clock):
        await session_cache.put("k", SessionRecord(subject_id=1), ttl_seconds=60)

        assert session_cache.ttl("k") == 60
        clock.advance(seconds=59)
        assert await session_cache.get("k") is not None
        clock.advance(seconds=1)
        assert await session_cache.get("k") is None
        assert await session_cache.delete("k") is False
        assert len(session_cache) == 0

    async def test_corrupt_entry_is_upstream_error(self, session_cache):
        session_cache._entries["k"] = ("{broken", None)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await session_cache.get("k")
        assert exc_info.value.reason == "corrupt_entry"

    async def test_close_clears(self, session_cache):
        await session_cache.put("k", SessionRecord(subject_id=1))
        await session_cache.close()
        assert len(session_cache) == 0


class TestRedisSessionCache:
    async def test_round_trip_and_ttl(self):
        client = FakeRedis()
        cache = RedisSessionCache("redis://localhost:6379/0", client=client)

        await cache.put("a", SessionRecord(subject_id=3))
        await cache.put("r", SessionRecord(subject_id=3), ttl_seconds=604800)

        assert client.data["a"] == '{"subjectId":3}'
        assert client.expiry["a"] is None
        assert client.expiry["r"] == 604800
        assert (await cache.get("a")).subject_id == 3
        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        assert await cache.get("a") is None

    async def test_close_releases_client(self):
        client = FakeRedis()
        cache = RedisSessionCache("redis://localhost:6379/0", client=client)

        await cache.close()

        assert client.closed is True

    async def test_corrupt_value(self):
        client = FakeRedis()
        client.data["k"] = "[1, 2]"
        cache = RedisSessionCache("redis://localhost:6379/0", client=client)

        with pytest.raises(UpstreamUnavailableError):
            await cache.get("k")

    @pytest.mark.parametrize("op", ["put", "get", "delete"])
    async def test_connection_failures_map_to_upstream_error(self, op):
        cache = RedisSessionCache("redis://localhost:6379/0", client=DownRedis())

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            if op == "put":
                await cache.put("k", SessionRecord(subject_id=1))
            elif op == "get":
                await cache.get("k")
            else:
                await cache.delete("k")

        assert exc_info.value.reason == "cache_unavailable"
        assert exc_info.value.detail["op"] == op
        assert "hunter2" not in exc_info.value.detail["cause"]
