"""
Local expiring cache.

This package provides:
- CacheStore: SQLite-backed cache with lazy expiry, sweep and eviction
- NullCacheStore: no-op cache used when storage is unavailable
- initialize(): startup entry point returning a ready cache
- CachedQuery / end_session(): application-facing helpers
- Codecs for typed payloads
"""

from schoolcache.cache.base import CacheBackend, TypedStore
from schoolcache.cache.codec import Codec, JsonCodec, ModelCodec
from schoolcache.cache.estimate import (
    DatabaseFileEstimator,
    StorageEstimator,
    UnsupportedEstimator,
)
from schoolcache.cache.lifecycle import CacheSweeper, initialize, run_maintenance, start_sweeper
from schoolcache.cache.null_store import NullCacheStore
from schoolcache.cache.query import CachedQuery
from schoolcache.cache.session import end_session
from schoolcache.cache.store import CacheStore

__all__ = [
    "CacheBackend",
    "CacheStore",
    "CacheSweeper",
    "CachedQuery",
    "Codec",
    "DatabaseFileEstimator",
    "JsonCodec",
    "ModelCodec",
    "NullCacheStore",
    "StorageEstimator",
    "TypedStore",
    "UnsupportedEstimator",
    "end_session",
    "initialize",
    "run_maintenance",
    "start_sweeper",
]
