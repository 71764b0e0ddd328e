"""
SQLite-backed local expiring cache.

Five logical stores, one table each, in a single database file. Entries
carry a write timestamp and an optional absolute expiry (milliseconds).
Freshness is handled by lazy expiry on read plus an eager sweep; capacity
is handled by a per-store entry ceiling and by quota recovery. Both
capacity mechanisms share one oldest-first eviction primitive.
"""

from __future__ import annotations

import asyncio
import math
import sqlite3
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

import aiosqlite
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from schoolcache.cache.base import CacheBackend
from schoolcache.cache.codec import DEFAULT_CODEC, Codec
from schoolcache.cache.estimate import DatabaseFileEstimator, StorageEstimator
from schoolcache.cache.schema import migrate
from schoolcache.config import Settings
from schoolcache.exceptions import (
    CacheIOError,
    CorruptEntryError,
    QuotaExceededError,
    StorageUnavailableError,
)
from schoolcache.logging import get_logger, log_context
from schoolcache.types import MS_PER_SECOND, CacheEntry, StoreName, now_ms

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7
DEFAULT_MAX_ENTRIES = 500
DEFAULT_EVICTION_FRACTION = 0.25

# Approximate per-row cost of the two integer columns.
ENTRY_OVERHEAD_BYTES = 16

# Largest value a SQLite INTEGER column holds.
MAX_TIMESTAMP_MS = 2**63 - 1


def _expiry_ms(now: int, ttl_seconds: float) -> int | None:
    """Absolute expiry for a TTL, None when it lies beyond the INTEGER range."""
    if math.isinf(ttl_seconds):
        return None
    ttl_ms = ttl_seconds * MS_PER_SECOND
    if ttl_ms >= MAX_TIMESTAMP_MS - now:
        return None
    return now + int(ttl_ms)


def _is_quota_error(error: sqlite3.Error) -> bool:
    if getattr(error, "sqlite_errorcode", None) == sqlite3.SQLITE_FULL:
        return True
    return "database or disk is full" in str(error).lower()


class CacheStore(CacheBackend):
    """Local expiring cache over an embedded SQLite database.

    Usage:
        store = CacheStore(".cache/cache.db")
        await store.open()
        await store.put("students", "class-4A", rows)
        rows = await store.get("students", "class-4A")
        await store.close()
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        eviction_fraction: float = DEFAULT_EVICTION_FRACTION,
        max_bytes: int | None = None,
        estimator: StorageEstimator | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the cache store.

        Args:
            db_path: Path to the cache database file.
            default_ttl_seconds: TTL used when put() is not given one.
            max_entries: Entry ceiling for each store.
            eviction_fraction: Share of each store evicted on quota failure.
            max_bytes: Storage budget for the database, None for unbounded.
            estimator: Usage estimator; defaults to the database file size.
            clock: Millisecond clock, injectable for tests.
        """
        self.db_path = Path(db_path)
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self.eviction_fraction = eviction_fraction
        self.max_bytes = max_bytes
        self.estimator = estimator or DatabaseFileEstimator(self.db_path)
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        # Held from each write statement through its commit or rollback.
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> CacheStore:
        """Build a store configured from application settings."""
        options: dict[str, Any] = {
            "default_ttl_seconds": settings.DEFAULT_TTL_SECONDS,
            "max_entries": settings.MAX_ENTRIES_PER_STORE,
            "eviction_fraction": settings.QUOTA_EVICTION_FRACTION,
            "max_bytes": settings.MAX_CACHE_BYTES,
        }
        options.update(overrides)
        return cls(settings.cache_db_path, **options)

    async def open(self) -> None:
        """Open the database, run migrations and apply the storage budget.

        Raises:
            StorageUnavailableError: If the database cannot be opened.
        """
        if self._db is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row
            await migrate(self._db)
            if self.max_bytes is not None:
                await self._apply_budget(self.max_bytes)
        except (OSError, sqlite3.Error) as e:
            await self.close()
            raise StorageUnavailableError(
                "Cache database could not be opened",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e

        logger.info("Cache store opened", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def _apply_budget(self, max_bytes: int) -> None:
        db = self._require_db()
        async with db.execute("PRAGMA page_size") as cursor:
            row = await cursor.fetchone()
        page_size = int(row[0]) if row else 4096
        max_pages = max(1, max_bytes // page_size)
        await db.execute(f"PRAGMA max_page_count = {max_pages}")
        logger.debug("Applied storage budget", max_bytes=max_bytes, max_pages=max_pages)

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("CacheStore not initialized. Call open() first.")
        return self._db

    async def _rollback(self) -> None:
        try:
            await self._require_db().rollback()
        except sqlite3.Error as e:
            logger.debug("Rollback after failed write also failed", error=str(e))

    async def put(
        self,
        store: StoreName | str,
        key: str,
        data: Any,
        ttl_seconds: float | None = None,
        *,
        codec: Codec[Any] | None = None,
    ) -> None:
        """Store a value, replacing any entry under the same key.

        Args:
            store: Logical store name.
            key: Entry key, unique within the store.
            data: Payload; must round-trip through the codec.
            ttl_seconds: Time to live. None uses the default, NO_EXPIRY
                stores the entry without an expiry. So does a TTL
                too large to store as a timestamp.
            codec: Payload codec, JSON when omitted.

        Raises:
            ValueError: If ttl_seconds is not positive.
            CacheSerializationError: If the payload cannot be encoded.
            QuotaExceededError: If the write still fails after eviction.
            CacheIOError: On any other storage failure.
        """
        store = StoreName.coerce(store)
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if not ttl > 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")

        payload = (codec or DEFAULT_CODEC).encode(data)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(QuotaExceededError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    await self._recover_quota(store, key)
                await self._write(store, key, payload, ttl)

        await self.enforce_limit(store)

    async def _write(self, store: StoreName, key: str, payload: bytes, ttl: float) -> None:
        db = self._require_db()
        now = self._clock()
        expires_at = _expiry_ms(now, ttl)

        async with self._write_lock:
            try:
                await db.execute(
                    f"""
                    INSERT OR REPLACE INTO {store.table} (key, data, timestamp, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, payload, now, expires_at),
                )
                await db.commit()
            except sqlite3.Error as e:
                await self._rollback()
                if _is_quota_error(e):
                    raise QuotaExceededError(
                        "Cache storage budget exhausted",
                        context={"store": store.value, "key": key},
                    ) from e
                raise CacheIOError(
                    "Cache write failed",
                    context={"operation": "put", "store": store.value, "error": str(e)},
                ) from e

    async def _recover_quota(self, store: StoreName, key: str) -> None:
        """Evict the oldest share of every non-empty store before a retry."""
        with log_context(store=store.value, operation="quota_recovery"):
            logger.warning("Quota exceeded, evicting oldest entries", key=key)
            removed = 0
            for candidate in StoreName:
                entries = await self.count(candidate)
                if entries:
                    removed += await self.evict_oldest(
                        candidate, math.ceil(entries * self.eviction_fraction)
                    )
            logger.info("Quota recovery evicted entries", removed=removed)

    async def get(
        self,
        store: StoreName | str,
        key: str,
        *,
        codec: Codec[Any] | None = None,
    ) -> Any | None:
        """Get a value.

        Expired and corrupt entries are deleted and reported as absent.

        Returns:
            The decoded payload, or None.
        """
        entry = await self.get_entry(store, key, codec=codec)
        return entry.data if entry is not None else None

    async def get_entry(
        self,
        store: StoreName | str,
        key: str,
        *,
        codec: Codec[Any] | None = None,
    ) -> CacheEntry[Any] | None:
        """Get a value together with its write time and expiry."""
        store = StoreName.coerce(store)
        db = self._require_db()

        try:
            async with db.execute(
                f"SELECT key, data, timestamp, expires_at FROM {store.table} WHERE key = ?",
                (key,),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise CacheIOError(
                "Cache read failed",
                context={"operation": "get", "store": store.value, "error": str(e)},
            ) from e

        if row is None:
            return None

        entry = CacheEntry(
            key=row["key"],
            data=None,
            timestamp=row["timestamp"],
            expires_at=row["expires_at"],
        )
        if entry.is_expired(self._clock()):
            await self.delete(store, key)
            logger.debug("Expired entry removed on read", store=store.value, key=key)
            return None

        codec = codec or DEFAULT_CODEC
        try:
            return replace(entry, data=codec.decode(bytes(row["data"])))
        except CorruptEntryError as e:
            logger.warning("Corrupt cache entry removed", store=store.value, key=key, error=str(e))
            await self.delete(store, key)
            return None

    async def delete(self, store: StoreName | str, key: str) -> None:
        """Delete a value. Deleting an absent key is not an error."""
        store = StoreName.coerce(store)
        await self._execute_write(
            "delete", store, f"DELETE FROM {store.table} WHERE key = ?", (key,)
        )

    async def clear(self, store: StoreName | str) -> None:
        """Remove every entry from one store."""
        store = StoreName.coerce(store)
        await self._execute_write("clear", store, f"DELETE FROM {store.table}", ())
        logger.info("Cleared cache store", store=store.value)

    async def _execute_write(
        self,
        operation: str,
        store: StoreName,
        sql: str,
        params: tuple[Any, ...],
    ) -> int:
        db = self._require_db()
        async with self._write_lock:
            try:
                async with db.execute(sql, params) as cursor:
                    affected = cursor.rowcount
                await db.commit()
            except sqlite3.Error as e:
                await self._rollback()
                raise CacheIOError(
                    f"Cache {operation} failed",
                    context={"operation": operation, "store": store.value, "error": str(e)},
                ) from e
        return max(affected, 0)

    async def count(self, store: StoreName | str) -> int:
        """Number of entries held by a store, expired or not."""
        store = StoreName.coerce(store)
        return await self._scalar("count", store, f"SELECT COUNT(*) FROM {store.table}")

    async def _scalar(
        self,
        operation: str,
        store: StoreName,
        sql: str,
        params: tuple[Any, ...] = (),
    ) -> int:
        db = self._require_db()
        try:
            async with db.execute(sql, params) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise CacheIOError(
                f"Cache {operation} failed",
                context={"operation": operation, "store": store.value, "error": str(e)},
            ) from e
        return int(row[0]) if row and row[0] is not None else 0

    async def sweep_expired(self) -> int:
        """Delete expired entries from every store.

        A failure on one store is logged and the sweep moves on.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        removed = 0
        for store in StoreName:
            with log_context(store=store.value, operation="sweep"):
                try:
                    removed += await self._execute_write(
                        "sweep",
                        store,
                        f"DELETE FROM {store.table} "
                        "WHERE expires_at IS NOT NULL AND expires_at < ?",
                        (now,),
                    )
                except CacheIOError as e:
                    logger.error("Sweep failed for store", error=str(e))
        if removed:
            logger.info("Swept expired cache entries", removed=removed)
        return removed

    async def enforce_limit(
        self, store: StoreName | str, max_entries: int | None = None
    ) -> int:
        """Evict oldest entries until the store holds at most ``max_entries``.

        Returns:
            Number of entries removed.
        """
        store = StoreName.coerce(store)
        limit = self.max_entries if max_entries is None else max_entries
        if limit < 0:
            raise ValueError(f"max_entries must be non-negative, got {limit}")

        current = await self.count(store)
        if current <= limit:
            return 0

        removed = await self.evict_oldest(store, current - limit)
        logger.info(
            "Enforced store ceiling",
            store=store.value,
            limit=limit,
            removed=removed,
        )
        return removed

    async def evict_oldest(self, store: StoreName | str, count: int) -> int:
        """Delete up to ``count`` entries in ascending timestamp order.

        Equal timestamps fall back to physical insertion order.
        """
        store = StoreName.coerce(store)
        if count <= 0:
            return 0
        table = store.table
        return await self._execute_write(
            "evict",
            store,
            f"""
            DELETE FROM {table} WHERE key IN (
                SELECT key FROM {table} ORDER BY timestamp ASC, rowid ASC LIMIT ?
            )
            """,
            (count,),
        )

    async def size_estimate(self) -> int:
        """Approximate bytes used by cached content.

        Uses platform-reported usage when the estimator supports it,
        otherwise sums serialized key and payload sizes.
        """
        usage = self.estimator.usage()
        if usage is not None:
            return usage

        total = 0
        for store in StoreName:
            total += await self._scalar(
                "size",
                store,
                f"SELECT SUM(length(key) + length(data) + ?) FROM {store.table}",
                (ENTRY_OVERHEAD_BYTES,),
            )
        return total

    async def stats(self) -> dict[str, Any]:
        """Per-store entry and expired counts plus the size estimate."""
        now = self._clock()
        stores: dict[str, dict[str, int]] = {}
        for store in StoreName:
            stores[store.value] = {
                "entries": await self.count(store),
                "expired": await self._scalar(
                    "stats",
                    store,
                    f"SELECT COUNT(*) FROM {store.table} "
                    "WHERE expires_at IS NOT NULL AND expires_at < ?",
                    (now,),
                ),
            }
        return {
            "path": str(self.db_path),
            "enabled": True,
            "max_entries": self.max_entries,
            "size_bytes": await self.size_estimate(),
            "stores": stores,
        }
