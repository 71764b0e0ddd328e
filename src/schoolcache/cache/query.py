"""
Stale-then-fresh reads over the cache.

A CachedQuery hands out whatever the cache holds for instant display,
then fetches the authoritative value from the backend and writes it back.
Cache failures only ever cost a miss; backend failures reach the caller.
"""

from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Generic, TypeVar

from schoolcache.cache.base import CacheBackend
from schoolcache.cache.codec import Codec
from schoolcache.exceptions import CacheError
from schoolcache.logging import get_logger, log_context
from schoolcache.types import StoreName

logger = get_logger(__name__)

T = TypeVar("T")


class CachedQuery(Generic[T]):
    """A backend read with a cached fallback for instant display."""

    def __init__(
        self,
        cache: CacheBackend,
        store: StoreName | str,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl_seconds: float | None = None,
        codec: Codec[T] | None = None,
    ) -> None:
        self.cache = cache
        self.store = StoreName.coerce(store)
        self.key = key
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.codec = codec

    async def cached(self) -> T | None:
        """Return the cached value, or None on a miss or cache failure."""
        with log_context(store=self.store.value, operation="cached_read"):
            try:
                return await self.cache.get(self.store, self.key, codec=self.codec)
            except CacheError as e:
                logger.warning("Cache read failed, treating as miss", key=self.key, error=str(e))
                return None

    async def refresh(self) -> T:
        """Fetch from the backend and write the result back to the cache."""
        fresh = await self.fetcher()
        with log_context(store=self.store.value, operation="write_back"):
            try:
                await self.cache.put(
                    self.store, self.key, fresh, self.ttl_seconds, codec=self.codec
                )
            except CacheError as e:
                logger.warning("Cache write-back failed", key=self.key, error=str(e))
        return fresh

    async def load(self) -> AsyncIterator[T]:
        """Yield the cached value (if any), then the fresh one."""
        stale = await self.cached()
        if stale is not None:
            yield stale
        yield await self.refresh()
