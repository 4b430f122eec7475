from __future__ import annotations

from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

from sessionauth.config import Settings, get_settings
from sessionauth.logging import get_logger
from sessionauth.service.auth import SessionAuthority
from sessionauth.storage.accounts import MemoryAccountStore, PostgresAccountStore
from sessionauth.storage.session_cache import MemorySessionCache, RedisSessionCache

logger = get_logger(__name__)

AccountBackend = Union[MemoryAccountStore, PostgresAccountStore]
CacheBackend = Union[MemorySessionCache, RedisSessionCache]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """redis://:pw@host:6379 -> redis://:***@host:6379"""
    if not url:
        return url
    try:
        parts = urlsplit(url)
        if parts.password is None:
            return url
        userinfo, _, hostinfo = parts.netloc.rpartition("@")
        user = userinfo.split(":", 1)[0]
        return urlunsplit(parts._replace(netloc=f"{user}:***@{hostinfo}"))
    except ValueError:
        return "***unparseable-url***"


def _build_store(settings: Settings) -> AccountBackend:
    if settings.use_memory_store:
        return MemoryAccountStore()
    return PostgresAccountStore(settings.database_url)


def _build_cache(settings: Settings) -> CacheBackend:
    if settings.use_memory_cache:
        return MemorySessionCache()
    cache = RedisSessionCache(settings.redis_url)
    try:
        cache.verify_connection()
    except Exception as exc:
        logger.error(
            "runtime_cache_init_failed",
            redis_url=_mask_url_password(settings.redis_url),
            error_type=type(exc).__name__,
        )
        raise RuntimeError(
            "Redis is required for session state; start Redis or set "
            "USE_MEMORY_CACHE=true for local development."
        ) from exc
    return cache


class Runtime:
    """Wires the account store, session cache and session authority together.

    Owned by whatever starts the process; there is no module-level instance.
    Use as ``async with Runtime(settings) as runtime:`` or call ``start`` and
    ``close`` explicitly.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.store = _build_store(self.settings)
        self.cache = _build_cache(self.settings)
        self.authority = SessionAuthority(self.settings, self.store, self.cache)
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            cache_type=type(self.cache).__name__,
            database_url=None
            if self.settings.use_memory_store
            else _mask_url_password(self.settings.database_url),
        )

    async def start(self) -> None:
        if isinstance(self.store, PostgresAccountStore):
            await self.store.open()

    async def close(self) -> None:
        if isinstance(self.store, PostgresAccountStore):
            await self.store.close()
        await self.cache.close()
        logger.info("runtime_closed")

    async def __aenter__(self) -> "Runtime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
