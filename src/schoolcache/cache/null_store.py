"""
No-op cache used when the embedded store is unavailable.

Reads always miss and writes always succeed, so callers run unchanged
with caching absent.
"""

from __future__ import annotations

from typing import Any

from schoolcache.cache.base import CacheBackend
from schoolcache.cache.codec import DEFAULT_CODEC, Codec
from schoolcache.types import StoreName


class NullCacheStore(CacheBackend):
    """Cache backend that stores nothing."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason

    async def put(
        self,
        store: StoreName | str,
        key: str,
        data: Any,
        ttl_seconds: float | None = None,
        *,
        codec: Codec[Any] | None = None,
    ) -> None:
        StoreName.coerce(store)
        if ttl_seconds is not None and not ttl_seconds > 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")
        # Same serialization contract as the real store.
        (codec or DEFAULT_CODEC).encode(data)

    async def get(
        self,
        store: StoreName | str,
        key: str,
        *,
        codec: Codec[Any] | None = None,
    ) -> Any | None:
        StoreName.coerce(store)
        return None

    async def delete(self, store: StoreName | str, key: str) -> None:
        StoreName.coerce(store)

    async def clear(self, store: StoreName | str) -> None:
        StoreName.coerce(store)

    async def count(self, store: StoreName | str) -> int:
        StoreName.coerce(store)
        return 0

    async def sweep_expired(self) -> int:
        return 0

    async def enforce_limit(
        self, store: StoreName | str, max_entries: int | None = None
    ) -> int:
        StoreName.coerce(store)
        return 0

    async def evict_oldest(self, store: StoreName | str, count: int) -> int:
        StoreName.coerce(store)
        return 0

    async def size_estimate(self) -> int:
        return 0

    async def stats(self) -> dict[str, Any]:
        return {
            "path": None,
            "enabled": False,
            "reason": self.reason,
            "size_bytes": 0,
            "stores": {store.value: {"entries": 0, "expired": 0} for store in StoreName},
        }
