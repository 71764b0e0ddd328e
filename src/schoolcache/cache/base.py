"""
Base classes for caching.

- CacheBackend: abstract interface shared by the SQLite store and the
  no-op store used when storage is unavailable
- TypedStore: a view over one logical store bound to a codec
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from schoolcache.cache.codec import Codec
from schoolcache.types import StoreName

T = TypeVar("T")


class CacheBackend(ABC):
    """Abstract interface for the local expiring cache."""

    @abstractmethod
    async def put(
        self,
        store: StoreName | str,
        key: str,
        data: Any,
        ttl_seconds: float | None = None,
        *,
        codec: Codec[Any] | None = None,
    ) -> None:
        """Store a value, replacing any entry under the same key."""
        ...

    @abstractmethod
    async def get(
        self,
        store: StoreName | str,
        key: str,
        *,
        codec: Codec[Any] | None = None,
    ) -> Any | None:
        """Get a value, or None if absent or expired."""
        ...

    @abstractmethod
    async def delete(self, store: StoreName | str, key: str) -> None:
        """Delete a value. Deleting an absent key is not an error."""
        ...

    @abstractmethod
    async def clear(self, store: StoreName | str) -> None:
        """Remove every entry from one store."""
        ...

    async def clear_all(self) -> None:
        """Remove every entry from every store."""
        for store in StoreName:
            await self.clear(store)

    @abstractmethod
    async def count(self, store: StoreName | str) -> int:
        """Number of entries held by a store, expired or not."""
        ...

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Delete expired entries from every store."""
        ...

    @abstractmethod
    async def enforce_limit(
        self, store: StoreName | str, max_entries: int | None = None
    ) -> int:
        """Evict oldest entries until the store is within its ceiling."""
        ...

    @abstractmethod
    async def evict_oldest(self, store: StoreName | str, count: int) -> int:
        """Delete up to ``count`` entries, oldest first."""
        ...

    @abstractmethod
    async def size_estimate(self) -> int:
        """Approximate bytes used by cached content."""
        ...

    @abstractmethod
    async def stats(self) -> dict[str, Any]:
        """Per-store counts and size information."""
        ...

    async def close(self) -> None:
        """Release any underlying resources."""
        return None

    def typed(self, store: StoreName | str, codec: Codec[T]) -> TypedStore[T]:
        """Bind a store to a codec for typed access."""
        return TypedStore(self, StoreName.coerce(store), codec)


class TypedStore(Generic[T]):
    """A single logical store whose values round-trip through one codec."""

    def __init__(self, backend: CacheBackend, store: StoreName, codec: Codec[T]) -> None:
        self.backend = backend
        self.store = store
        self.codec = codec

    async def get(self, key: str) -> T | None:
        return await self.backend.get(self.store, key, codec=self.codec)

    async def put(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        await self.backend.put(self.store, key, value, ttl_seconds, codec=self.codec)

    async def delete(self, key: str) -> None:
        await self.backend.delete(self.store, key)
