"""
Core types for the offline cache.

This module defines the fundamental data structures used throughout the system:
- StoreName enum for the fixed logical cache partitions
- CacheEntry for general cache records
- ExamMetadata / EncryptedExamRecord for the encrypted exam store
- DeviceInfo for the device keyring
- Helper functions for millisecond timestamps
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from schoolcache.exceptions import UnknownStoreError

T = TypeVar("T")

MS_PER_SECOND = 1000
MS_PER_DAY = 24 * 60 * 60 * MS_PER_SECOND

# Pass as ttl_seconds to store an entry that never expires.
NO_EXPIRY = math.inf


def now_ms() -> int:
    """Get the current time in milliseconds since the epoch."""
    return int(time.time() * MS_PER_SECOND)


class StoreName(str, Enum):
    """Logical partitions of the general cache."""

    STUDENTS = "students"
    MARKS = "marks"
    SUBJECTS = "subjects"
    CLASSES = "classes"
    GENERAL = "general"

    @property
    def table(self) -> str:
        """Physical table backing this store."""
        return f"{self.value}_cache"

    @classmethod
    def coerce(cls, value: StoreName | str) -> StoreName:
        """Accept an enum member, its value, or its name (any case)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized.endswith("_cache"):
            normalized = normalized[: -len("_cache")]
        try:
            return cls(normalized)
        except ValueError:
            raise UnknownStoreError(
                f"Unknown cache store: {value}",
                context={"valid": [s.value for s in cls]},
            ) from None


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value with its write time and optional expiry (both in ms)."""

    key: str
    data: T
    timestamp: int
    expires_at: int | None = None

    def is_expired(self, now: int | None = None) -> bool:
        """True when the entry has an expiry that lies in the past."""
        if self.expires_at is None:
            return False
        return self.expires_at < (now_ms() if now is None else now)


@dataclass(frozen=True)
class ExamMetadata:
    """Descriptive metadata stored alongside an encrypted exam."""

    school_id: str
    school_name: str
    class_name: str
    subject: str
    exam_type: str
    teacher_id: str
    teacher_name: str
    version: int = 1
    total_marks: int = 100
    time_allowed: int = 120

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExamMetadata:
        return cls(**data)


@dataclass(frozen=True)
class EncryptedExamRecord:
    """An exam paper encrypted for offline use on one device.

    ``encrypted_data`` is AES-GCM ciphertext, ``iv`` its nonce and
    ``encrypted_key`` the content key wrapped with the device public key.
    """

    exam_id: str
    encrypted_data: bytes
    iv: bytes
    encrypted_key: bytes
    metadata: ExamMetadata
    timestamp: int


@dataclass
class DeviceInfo:
    """Identity of this device for exam distribution."""

    device_id: str
    device_name: str
    public_key: str
    registered_at: int
    last_active: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceInfo:
        return cls(
            device_id=data["device_id"],
            device_name=data["device_name"],
            public_key=data["public_key"],
            registered_at=int(data["registered_at"]),
            last_active=int(data["last_active"]),
        )
