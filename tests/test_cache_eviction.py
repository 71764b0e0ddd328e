"""
Tests for store ceilings, oldest-first eviction and quota recovery.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from schoolcache.cache import CacheStore, UnsupportedEstimator
from schoolcache.exceptions import CacheIOError, QuotaExceededError


async def _fill(store: CacheStore, clock, name: str, count: int, start: int = 0) -> None:
    """Insert ``count`` entries with strictly increasing timestamps."""
    for i in range(start, start + count):
        await store.put(name, f"k{i:04d}", {"i": i})
        clock.advance(1)


class TestEnforceLimit:
    """Test the per-store entry ceiling."""

    async def test_put_keeps_store_at_ceiling(self, temp_dir: Path, clock) -> None:
        """Test that 505 writes into a 500-entry store evict the 5 oldest."""
        store = CacheStore(temp_dir / "c.db", clock=clock, max_entries=500)
        await store.open()
        try:
            await _fill(store, clock, "general", 505)
            await store.enforce_limit("general", 500)

            assert await store.count("general") == 500
            for i in range(5):
                assert await store.get("general", f"k{i:04d}") is None
            for i in range(5, 505):
                assert await store.get("general", f"k{i:04d}") == {"i": i}
        finally:
            await store.close()

    async def test_enforce_limit_explicit_max(self, cache_store: CacheStore, clock) -> None:
        """Test that survivors are never older than anything removed."""
        await _fill(cache_store, clock, "marks", 20)

        removed = await cache_store.enforce_limit("marks", 12)

        assert removed == 8
        assert await cache_store.count("marks") == 12
        survivors = [await cache_store.get("marks", f"k{i:04d}") for i in range(20)]
        assert survivors[:8] == [None] * 8
        assert all(value is not None for value in survivors[8:])

    async def test_enforce_limit_under_ceiling_is_noop(
        self, cache_store: CacheStore, clock
    ) -> None:
        await _fill(cache_store, clock, "classes", 3)

        assert await cache_store.enforce_limit("classes", 3) == 0
        assert await cache_store.count("classes") == 3

    async def test_enforce_limit_equal_timestamps(self, cache_store: CacheStore) -> None:
        """Test the count postcondition when every timestamp is the same."""
        for i in range(10):
            await cache_store.put("subjects", f"k{i}", i)

        await cache_store.enforce_limit("subjects", 4)

        assert await cache_store.count("subjects") == 4

    async def test_overwrite_refreshes_age(self, temp_dir: Path, clock) -> None:
        """Test that rewriting an old key protects it from eviction."""
        store = CacheStore(temp_dir / "c.db", clock=clock, max_entries=3)
        await store.open()
        try:
            await _fill(store, clock, "general", 3)
            await store.put("general", "k0000", {"i": "rewritten"})
            clock.advance(1)
            await store.put("general", "new", {"i": "new"})

            assert await store.get("general", "k0000") == {"i": "rewritten"}
            assert await store.get("general", "k0001") is None
            assert await store.count("general") == 3
        finally:
            await store.close()

    async def test_negative_limit_rejected(self, cache_store: CacheStore) -> None:
        with pytest.raises(ValueError):
            await cache_store.enforce_limit("general", -1)


class TestEvictOldest:
    """Test the shared eviction primitive."""

    async def test_evicts_requested_count(self, cache_store: CacheStore, clock) -> None:
        await _fill(cache_store, clock, "students", 10)

        assert await cache_store.evict_oldest("students", 3) == 3
        assert await cache_store.get("students", "k0002") is None
        assert await cache_store.get("students", "k0003") == {"i": 3}

    async def test_evicts_at_most_what_exists(self, cache_store: CacheStore, clock) -> None:
        await _fill(cache_store, clock, "students", 2)

        assert await cache_store.evict_oldest("students", 10) == 2
        assert await cache_store.count("students") == 0

    async def test_zero_count_is_noop(self, cache_store: CacheStore, clock) -> None:
        await _fill(cache_store, clock, "students", 2)

        assert await cache_store.evict_oldest("students", 0) == 0
        assert await cache_store.count("students") == 2


class TestQuotaRecovery:
    """Test eviction and single retry when the storage budget is exhausted."""

    async def test_quota_failure_evicts_and_retries_once(
        self, cache_store: CacheStore, clock
    ) -> None:
        await _fill(cache_store, clock, "students", 8)
        await _fill(cache_store, clock, "marks", 4)

        write = AsyncMock(
            side_effect=[QuotaExceededError("full"), None],
        )
        with patch.object(cache_store, "_write", write):
            await cache_store.put("general", "k", {"v": 1})

        assert write.await_count == 2
        # 25% of each non-empty store, rounded up
        assert await cache_store.count("students") == 6
        assert await cache_store.count("marks") == 3
        assert await cache_store.get("students", "k0001") is None
        assert await cache_store.get("students", "k0002") == {"i": 2}

    async def test_quota_failure_surfaces_after_retry(
        self, cache_store: CacheStore, clock
    ) -> None:
        await _fill(cache_store, clock, "students", 4)

        write = AsyncMock(side_effect=QuotaExceededError("full"))
        with patch.object(cache_store, "_write", write):
            with pytest.raises(QuotaExceededError):
                await cache_store.put("general", "k", {"v": 1})

        assert write.await_count == 2

    async def test_other_io_errors_are_not_retried(self, cache_store: CacheStore) -> None:
        write = AsyncMock(side_effect=CacheIOError("disk I/O error"))
        with patch.object(cache_store, "_write", write):
            with pytest.raises(CacheIOError):
                await cache_store.put("general", "k", {"v": 1})

        assert write.await_count == 1

    async def test_real_budget_oversized_payload_raises(self, temp_dir: Path) -> None:
        """Test that a payload larger than the whole budget fails after retry."""
        store = CacheStore(
            temp_dir / "small.db",
            max_bytes=64 * 4096,
            estimator=UnsupportedEstimator(),
        )
        await store.open()
        try:
            await store.put("general", "small", {"v": 1})

            with pytest.raises(QuotaExceededError):
                await store.put("general", "huge", "x" * (1024 * 1024))

            assert await store.get("general", "huge") is None
        finally:
            await store.close()

    async def test_real_budget_recovers_by_eviction(self, temp_dir: Path, clock) -> None:
        """Test that writes keep succeeding against a tight budget."""
        store = CacheStore(
            temp_dir / "tight.db",
            clock=clock,
            max_bytes=48 * 4096,
            eviction_fraction=0.5,
            estimator=UnsupportedEstimator(),
        )
        await store.open()
        try:
            for i in range(200):
                await store.put("general", f"k{i:04d}", "x" * 1500)
                clock.advance(1)

            assert await store.get("general", "k0199") == "x" * 1500
            assert await store.count("general") < 200
        finally:
            await store.close()


class TestConcurrentWrites:
    """Test that a failed write never undoes another caller's write."""

    async def test_failed_put_keeps_concurrent_put(self, cache_store: CacheStore) -> None:
        db = cache_store._require_db()
        await db.execute("DROP TABLE marks_cache")
        await db.commit()

        results = await asyncio.gather(
            cache_store.put("marks", "k", {"v": 1}),
            cache_store.put("students", "small", {"v": 2}),
            return_exceptions=True,
        )

        assert isinstance(results[0], CacheIOError)
        assert results[1] is None
        assert await cache_store.get("students", "small") == {"v": 2}

    async def test_quota_failure_keeps_concurrent_put(self, temp_dir: Path, clock) -> None:
        store = CacheStore(
            temp_dir / "small.db",
            clock=clock,
            max_bytes=64 * 4096,
            estimator=UnsupportedEstimator(),
        )
        await store.open()
        try:
            await _fill(store, clock, "students", 10)

            results = await asyncio.gather(
                store.put("general", "huge", "x" * (1024 * 1024)),
                store.put("students", "small", {"v": 2}),
                return_exceptions=True,
            )

            assert isinstance(results[0], QuotaExceededError)
            assert results[1] is None
            assert await store.get("students", "small") == {"v": 2}
        finally:
            await store.close()

    async def test_concurrent_puts_all_land(self, cache_store: CacheStore) -> None:
        await asyncio.gather(*(cache_store.put("classes", f"c{i}", i) for i in range(20)))

        assert await cache_store.count("classes") == 20
