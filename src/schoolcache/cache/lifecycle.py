"""
Cache startup and periodic maintenance.

initialize() is called once by application startup. It opens the store,
sweeps expired entries, enforces every store ceiling and hands back the
cache. If the store cannot be opened the application gets a
NullCacheStore and keeps working without a cache.
"""

from __future__ import annotations

import asyncio
from typing import Any

from schoolcache.cache.base import CacheBackend
from schoolcache.cache.null_store import NullCacheStore
from schoolcache.cache.store import CacheStore
from schoolcache.config import Settings, get_settings
from schoolcache.exceptions import CacheError, StorageUnavailableError
from schoolcache.logging import get_logger
from schoolcache.types import StoreName

logger = get_logger(__name__)


async def initialize(settings: Settings | None = None, **overrides: Any) -> CacheBackend:
    """Open the cache and run startup maintenance.

    Args:
        settings: Settings to use; defaults to get_settings().
        **overrides: Extra CacheStore constructor arguments (e.g. clock).

    Returns:
        An open CacheStore, or a NullCacheStore when storage is unavailable.
    """
    settings = settings or get_settings()

    if not settings.CACHE_ENABLED:
        logger.info("Cache disabled by configuration")
        return NullCacheStore(reason="disabled")

    store = CacheStore.from_settings(settings, **overrides)
    try:
        await store.open()
    except StorageUnavailableError as e:
        logger.warning("Cache storage unavailable, running without cache", error=str(e))
        return NullCacheStore(reason=str(e))

    await run_maintenance(store)
    return store


async def run_maintenance(cache: CacheBackend) -> None:
    """Sweep expired entries and enforce every store ceiling.

    Failures are logged; maintenance never prevents startup.
    """
    try:
        await cache.sweep_expired()
    except CacheError as e:
        logger.error("Startup sweep failed", error=str(e))

    for store in StoreName:
        try:
            await cache.enforce_limit(store)
        except CacheError as e:
            logger.error("Startup limit enforcement failed", store=store.value, error=str(e))


class CacheSweeper:
    """Runs sweep_expired() on a fixed interval in a background task."""

    def __init__(self, cache: CacheBackend, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.cache.sweep_expired()
            except CacheError as e:
                logger.error("Periodic sweep failed", error=str(e))


def start_sweeper(cache: CacheBackend, settings: Settings | None = None) -> CacheSweeper | None:
    """Start a periodic sweeper if SWEEP_INTERVAL_SECONDS is set."""
    settings = settings or get_settings()
    if settings.SWEEP_INTERVAL_SECONDS <= 0:
        return None
    sweeper = CacheSweeper(cache, settings.SWEEP_INTERVAL_SECONDS)
    sweeper.start()
    return sweeper
