"""
Storage usage estimators.

Reporting platform usage is an optional capability. Stores ask their
estimator first and fall back to summing payload sizes when the
estimator reports ``None``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class StorageEstimator(Protocol):
    """Reports bytes used on disk, or None when unsupported."""

    def usage(self) -> int | None: ...


class UnsupportedEstimator:
    """Estimator for hosts that cannot report usage."""

    def usage(self) -> int | None:
        return None


class DatabaseFileEstimator:
    """Sums the size of a SQLite database file and its WAL/SHM siblings."""

    SIDECAR_SUFFIXES = ("", "-wal", "-shm", "-journal")

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def usage(self) -> int | None:
        if not self.db_path.exists():
            return None
        total = 0
        for suffix in self.SIDECAR_SUFFIXES:
            path = self.db_path.with_name(self.db_path.name + suffix)
            if path.exists():
                total += path.stat().st_size
        return total
