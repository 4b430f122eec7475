from __future__ import annotations

import hashlib
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from sessionauth.logging import get_logger, sanitize_error_message
from sessionauth.service.errors import UpstreamUnavailableError
from sessionauth.storage.models import SessionRecord

logger = get_logger(__name__)

ACCESS_KEY_PREFIX = "user_session:"
REFRESH_KEY_PREFIX = "user_refresh:"


def cache_key(prefix: str, token: str) -> str:
    """Namespace + SHA-256 of the token; raw bearer tokens never become keys."""

    return prefix + hashlib.sha256(token.encode("utf-8")).hexdigest()


def _decode_record(key: str, raw: str | bytes) -> SessionRecord:
    try:
        return SessionRecord.decode(raw)
    except (ValueError, TypeError) as exc:
        # JSONDecodeError is a ValueError
        raise UpstreamUnavailableError(
            "Corrupt session cache entry",
            reason="corrupt_entry",
            detail={"key_prefix": key.split(":", 1)[0]},
        ) from exc


class SessionCache(Protocol):
    async def put(
        self, key: str, record: SessionRecord, ttl_seconds: Optional[int] = None
    ) -> None: ...

    async def get(self, key: str) -> Optional[SessionRecord]: ...

    async def delete(self, key: str) -> bool: ...


class RedisSessionCache:
    """Redis-backed session cache.

    Each operation is a single Redis command, so per-key atomicity is whatever
    Redis provides; nothing here serializes concurrent callers.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.redis_url = redis_url
        self.client = client if client is not None else aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()
        logger.info("redis_connection_verified")

    @staticmethod
    def _unavailable(op: str, exc: Exception) -> UpstreamUnavailableError:
        return UpstreamUnavailableError(
            f"Session cache {op} failed",
            reason="cache_unavailable",
            detail={"op": op, "cause": sanitize_error_message(str(exc))},
        )

    async def put(
        self, key: str, record: SessionRecord, ttl_seconds: Optional[int] = None
    ) -> None:
        ex = max(1, int(ttl_seconds)) if ttl_seconds is not None else None
        try:
            await self.client.set(key, record.encode(), ex=ex)
        except (RedisError, OSError) as exc:
            raise self._unavailable("put", exc) from exc

    async def get(self, key: str) -> Optional[SessionRecord]:
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise self._unavailable("get", exc) from exc
        if raw is None:
            return None
        return _decode_record(key, raw)

    async def delete(self, key: str) -> bool:
        try:
            removed = await self.client.delete(key)
        except (RedisError, OSError) as exc:
            raise self._unavailable("delete", exc) from exc
        return bool(removed)

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.client.aclose()


class MemorySessionCache:
    """In-process session cache with per-key expiry.

    Stores the encoded form so the storage contract is exercised exactly as
    with Redis. ``clock`` returns epoch seconds and is injectable for tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return raw

    async def put(
        self, key: str, record: SessionRecord, ttl_seconds: Optional[int] = None
    ) -> None:
        expires_at = (
            self._clock() + max(1, int(ttl_seconds)) if ttl_seconds is not None else None
        )
        with self._lock:
            self._entries[key] = (record.encode(), expires_at)

    async def get(self, key: str) -> Optional[SessionRecord]:
        with self._lock:
            raw = self._live(key)
        if raw is None:
            return None
        return _decode_record(key, raw)

    async def delete(self, key: str) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._entries.pop(key, None)
            return True

    def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds; None when absent or without expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] is None:
                return None
            return entry[1] - self._clock()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live(key) is not None)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
