"""Logout handling for the local cache."""

from __future__ import annotations

from typing import Iterable

from schoolcache.cache.base import CacheBackend
from schoolcache.exceptions import CacheError
from schoolcache.logging import get_logger, log_context
from schoolcache.types import StoreName

logger = get_logger(__name__)


async def end_session(
    cache: CacheBackend,
    stores: Iterable[StoreName | str] | None = None,
) -> list[StoreName]:
    """Clear cached data so it does not leak into the next session.

    Args:
        cache: The cache to clear.
        stores: Stores to clear; every store when None.

    Returns:
        The stores that were cleared successfully.
    """
    targets = [StoreName.coerce(s) for s in stores] if stores is not None else list(StoreName)
    cleared: list[StoreName] = []
    for store in targets:
        with log_context(store=store.value, operation="end_session"):
            try:
                await cache.clear(store)
            except CacheError as e:
                logger.error("Failed to clear store on logout", error=str(e))
                continue
        cleared.append(store)
    return cleared
