"""
Encrypted exam store.

Holds exam papers encrypted for this device so they can be opened
offline. Records never expire on their own; cleanup_old() ages them out.
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Callable

import aiosqlite
import orjson

from schoolcache.cache.estimate import DatabaseFileEstimator, StorageEstimator
from schoolcache.config import Settings
from schoolcache.exceptions import CacheIOError, StorageUnavailableError
from schoolcache.logging import get_logger
from schoolcache.types import MS_PER_DAY, EncryptedExamRecord, ExamMetadata, now_ms

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 30


class ExamStore:
    """SQLite-backed store of encrypted exams keyed by exam ID."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        estimator: StorageEstimator | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the exam store.

        Args:
            db_path: Path to the exam database file.
            estimator: Usage estimator; defaults to the database file size.
            clock: Millisecond clock, injectable for tests.
        """
        self.db_path = Path(db_path)
        self.estimator = estimator or DatabaseFileEstimator(self.db_path)
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> ExamStore:
        return cls(settings.exam_db_path, **overrides)

    async def init(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS encrypted_exams (
                    exam_id TEXT PRIMARY KEY,
                    school_id TEXT NOT NULL,
                    encrypted_data BLOB NOT NULL,
                    iv BLOB NOT NULL,
                    encrypted_key BLOB NOT NULL,
                    metadata TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_exams_school ON encrypted_exams(school_id)"
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_exams_timestamp ON encrypted_exams(timestamp)"
            )
            await self._db.commit()
        except (OSError, sqlite3.Error) as e:
            await self.close()
            raise StorageUnavailableError(
                "Exam database could not be opened",
                context={"path": str(self.db_path), "error": str(e)},
            ) from e

        logger.info("Exam store initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ExamStore not initialized. Call init() first.")
        return self._db

    async def _write(self, operation: str, sql: str, params: tuple[object, ...]) -> int:
        db = self._require_db()
        async with self._write_lock:
            try:
                async with db.execute(sql, params) as cursor:
                    affected = cursor.rowcount
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise CacheIOError(
                    f"Exam {operation} failed",
                    context={"operation": operation, "error": str(e)},
                ) from e
        return max(affected, 0)

    async def save(self, record: EncryptedExamRecord) -> None:
        """Store an encrypted exam, replacing any previous version."""
        await self._write(
            "save",
            """
            INSERT OR REPLACE INTO encrypted_exams (
                exam_id, school_id, encrypted_data, iv, encrypted_key, metadata, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.exam_id,
                record.metadata.school_id,
                record.encrypted_data,
                record.iv,
                record.encrypted_key,
                orjson.dumps(record.metadata.to_dict()).decode("utf-8"),
                record.timestamp,
            ),
        )
        logger.debug(
            "Stored encrypted exam",
            exam_id=record.exam_id,
            school_id=record.metadata.school_id,
            size=len(record.encrypted_data),
        )

    async def get(self, exam_id: str) -> EncryptedExamRecord | None:
        """Retrieve an exam by ID."""
        rows = await self._select("SELECT * FROM encrypted_exams WHERE exam_id = ?", (exam_id,))
        return self._row_to_record(rows[0]) if rows else None

    async def list_for_school(self, school_id: str) -> list[EncryptedExamRecord]:
        """All exams stored for one school, newest first."""
        rows = await self._select(
            """
            SELECT * FROM encrypted_exams
            WHERE school_id = ?
            ORDER BY timestamp DESC
            """,
            (school_id,),
        )
        return [self._row_to_record(row) for row in rows]

    async def delete(self, exam_id: str) -> None:
        """Remove an exam. Removing an absent exam is not an error."""
        await self._write("delete", "DELETE FROM encrypted_exams WHERE exam_id = ?", (exam_id,))

    async def cleanup_old(self, days_to_keep: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete exams stored more than ``days_to_keep`` days ago.

        Returns:
            Number of exams removed.
        """
        if days_to_keep < 0:
            raise ValueError(f"days_to_keep must be non-negative, got {days_to_keep}")
        cutoff = self._clock() - days_to_keep * MS_PER_DAY
        removed = await self._write(
            "cleanup", "DELETE FROM encrypted_exams WHERE timestamp < ?", (cutoff,)
        )
        if removed:
            logger.info("Removed old exams", removed=removed, days_to_keep=days_to_keep)
        return removed

    async def count(self) -> int:
        """Get total count of stored exams."""
        rows = await self._select("SELECT COUNT(*) FROM encrypted_exams", ())
        return int(rows[0][0]) if rows else 0

    def storage_size(self) -> int:
        """Bytes used by the exam database, 0 when the host cannot tell."""
        return self.estimator.usage() or 0

    async def _select(self, sql: str, params: tuple[object, ...]) -> list[aiosqlite.Row]:
        db = self._require_db()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise CacheIOError(
                "Exam read failed",
                context={"operation": "select", "error": str(e)},
            ) from e

    def _row_to_record(self, row: aiosqlite.Row) -> EncryptedExamRecord:
        """Convert a database row to EncryptedExamRecord."""
        return EncryptedExamRecord(
            exam_id=row["exam_id"],
            encrypted_data=bytes(row["encrypted_data"]),
            iv=bytes(row["iv"]),
            encrypted_key=bytes(row["encrypted_key"]),
            metadata=ExamMetadata.from_dict(orjson.loads(row["metadata"])),
            timestamp=int(row["timestamp"]),
        )
