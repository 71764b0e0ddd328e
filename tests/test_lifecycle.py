"""
Tests for cache startup, degradation to the null cache and the sweeper.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from schoolcache.cache import (
    CacheStore,
    CacheSweeper,
    NullCacheStore,
    initialize,
    run_maintenance,
    start_sweeper,
)
from schoolcache.config import Settings
from schoolcache.exceptions import CacheIOError, CacheSerializationError, StorageUnavailableError
from schoolcache.types import StoreName


class TestInitialize:
    """Test the startup entry point."""

    @pytest.mark.asyncio
    async def test_returns_open_store(self, mock_settings: Settings) -> None:
        cache = await initialize(mock_settings)
        try:
            assert isinstance(cache, CacheStore)
            await cache.put("general", "k", 1)
            assert await cache.get("general", "k") == 1
            assert mock_settings.cache_db_path.exists()
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_startup_sweeps_and_enforces(
        self, mock_settings: Settings, clock
    ) -> None:
        """Test that startup removes expired entries and trims oversized stores."""
        seed = CacheStore.from_settings(mock_settings, clock=clock, max_entries=1000)
        await seed.open()
        for i in range(10):
            await seed.put("marks", f"k{i}", i)
            clock.advance(1)
        await seed.put("general", "stale", 1, ttl_seconds=1)
        await seed.close()
        clock.advance(5000)

        cache = await initialize(mock_settings, clock=clock, max_entries=4)
        try:
            assert await cache.count("marks") == 4
            assert await cache.get("marks", "k9") == 9
            assert await cache.count("general") == 0
        finally:
            await cache.close()

    @pytest.mark.asyncio
    async def test_disabled_returns_null_store(self, mock_settings: Settings) -> None:
        settings = mock_settings.model_copy(update={"CACHE_ENABLED": False})

        cache = await initialize(settings)

        assert isinstance(cache, NullCacheStore)
        assert cache.reason == "disabled"

    @pytest.mark.asyncio
    async def test_unavailable_storage_degrades(
        self, mock_settings: Settings, temp_dir: Path
    ) -> None:
        """Test that an unopenable database yields a working null cache."""
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("file where a directory should be")
        settings = mock_settings.model_copy(update={"CACHE_DIR": blocker})

        cache = await initialize(settings)

        assert isinstance(cache, NullCacheStore)
        await cache.put("students", "k", {"v": 1})
        assert await cache.get("students", "k") is None

    @pytest.mark.asyncio
    async def test_open_raises_storage_unavailable(self, temp_dir: Path) -> None:
        blocker = temp_dir / "blocker"
        blocker.write_text("x")

        store = CacheStore(blocker / "cache.db")
        with pytest.raises(StorageUnavailableError) as exc_info:
            await store.open()

        assert "path" in exc_info.value.context


class TestRunMaintenance:
    """Test that maintenance failures never escape."""

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self) -> None:
        cache = NullCacheStore()
        cache.sweep_expired = AsyncMock(side_effect=CacheIOError("boom"))  # type: ignore[method-assign]
        cache.enforce_limit = AsyncMock(side_effect=CacheIOError("boom"))  # type: ignore[method-assign]

        await run_maintenance(cache)

        assert cache.enforce_limit.await_count == len(StoreName)


class TestNullCacheStore:
    """Test the no-op cache."""

    @pytest.mark.asyncio
    async def test_always_misses(self) -> None:
        cache = NullCacheStore()

        await cache.put("general", "k", {"v": 1})

        assert await cache.get("general", "k") is None
        assert await cache.count("general") == 0
        assert await cache.sweep_expired() == 0
        assert await cache.enforce_limit("general") == 0
        assert await cache.size_estimate() == 0

    @pytest.mark.asyncio
    async def test_keeps_validation_contract(self) -> None:
        cache = NullCacheStore()

        with pytest.raises(ValueError):
            await cache.get("teachers", "k")
        with pytest.raises(CacheSerializationError):
            await cache.put("general", "k", object())

    @pytest.mark.asyncio
    async def test_stats_reports_disabled(self) -> None:
        stats = await NullCacheStore(reason="unsupported").stats()

        assert stats["enabled"] is False
        assert stats["reason"] == "unsupported"
        assert set(stats["stores"]) == {s.value for s in StoreName}


class TestCacheSweeper:
    """Test periodic sweeping."""

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self) -> None:
        cache = NullCacheStore()
        cache.sweep_expired = AsyncMock(return_value=0)  # type: ignore[method-assign]

        sweeper = CacheSweeper(cache, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert cache.sweep_expired.await_count >= 2
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_sweeper_survives_errors(self) -> None:
        cache = NullCacheStore()
        cache.sweep_expired = AsyncMock(side_effect=CacheIOError("locked"))  # type: ignore[method-assign]

        sweeper = CacheSweeper(cache, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.05)

        assert sweeper.running
        await sweeper.stop()

    def test_invalid_interval(self) -> None:
        with pytest.raises(ValueError):
            CacheSweeper(NullCacheStore(), interval_seconds=0)

    @pytest.mark.asyncio
    async def test_start_sweeper_respects_settings(self, mock_settings: Settings) -> None:
        assert start_sweeper(NullCacheStore(), mock_settings) is None

        settings = mock_settings.model_copy(update={"SWEEP_INTERVAL_SECONDS": 60.0})
        sweeper = start_sweeper(NullCacheStore(), settings)
        assert sweeper is not None
        assert sweeper.running
        await sweeper.stop()
