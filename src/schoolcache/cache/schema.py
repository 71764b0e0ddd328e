"""
Cache database schema and migrations.

The schema version lives in ``PRAGMA user_version``. Migrations are
idempotent: each one creates whatever tables and indexes are missing.
"""

from __future__ import annotations

import aiosqlite

from schoolcache.logging import get_logger
from schoolcache.types import StoreName

logger = get_logger(__name__)

SCHEMA_VERSION = 1


def _create_store_sql(store: StoreName) -> list[str]:
    table = store.table
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            key TEXT PRIMARY KEY,
            data BLOB NOT NULL,
            timestamp INTEGER NOT NULL,
            expires_at INTEGER
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_{table}_timestamp ON {table}(timestamp)",
        f"CREATE INDEX IF NOT EXISTS idx_{table}_expires_at ON {table}(expires_at)",
    ]


async def get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def migrate(db: aiosqlite.Connection) -> int:
    """Bring the database up to SCHEMA_VERSION.

    Returns:
        The version the database was at before migrating.
    """
    current = await get_schema_version(db)
    if current >= SCHEMA_VERSION:
        # Tables may still have been dropped by hand; recreate quietly.
        await _create_missing_stores(db)
        return current

    logger.info("Migrating cache schema", from_version=current, to_version=SCHEMA_VERSION)
    await _create_missing_stores(db)
    await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    await db.commit()
    return current


async def _create_missing_stores(db: aiosqlite.Connection) -> None:
    for store in StoreName:
        for statement in _create_store_sql(store):
            await db.execute(statement)
    await db.commit()
