"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates fields and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        CACHE_DIR: Directory holding the cache and exam databases
        CACHE_ENABLED: Set to false to run with caching disabled
        DEFAULT_TTL_SECONDS: TTL applied when put() is given none
        MAX_ENTRIES_PER_STORE: Entry ceiling for each general store
        QUOTA_EVICTION_FRACTION: Share of entries evicted on quota failure
        MAX_CACHE_BYTES: Storage budget for the cache database
        EXAM_RETENTION_DAYS: Default retention for encrypted exams
        SWEEP_INTERVAL_SECONDS: Periodic sweep interval (0 disables)
        BACKEND_URL: Base URL of the managed backend
        BACKEND_API_KEY: Anonymous/service key for the managed backend
        LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage locations
    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")
    CACHE_DB_NAME: str = Field(default="cache.db", description="Cache database file name")
    EXAM_DB_NAME: str = Field(default="exams.db", description="Exam database file name")
    DEVICE_FILE_NAME: str = Field(default="device.json", description="Device keyring file name")

    # Cache behaviour
    CACHE_ENABLED: bool = Field(default=True, description="Enable the local cache")
    DEFAULT_TTL_SECONDS: float = Field(
        default=60 * 60 * 24 * 7, gt=0, description="Default entry TTL in seconds"
    )
    MAX_ENTRIES_PER_STORE: int = Field(
        default=500, ge=1, description="Maximum entries per general store"
    )
    QUOTA_EVICTION_FRACTION: float = Field(
        default=0.25, description="Fraction of entries evicted when the quota is hit"
    )
    MAX_CACHE_BYTES: int | None = Field(
        default=None, ge=0, description="Storage budget for the cache database"
    )
    EXAM_RETENTION_DAYS: int = Field(
        default=30, ge=0, description="Days to keep encrypted exams"
    )
    SWEEP_INTERVAL_SECONDS: float = Field(
        default=0.0, ge=0.0, description="Periodic sweep interval (0 disables)"
    )

    # Remote backend
    BACKEND_URL: str | None = Field(default=None, description="Managed backend base URL")
    BACKEND_API_KEY: str | None = Field(default=None, description="Managed backend API key")

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @property
    def cache_db_path(self) -> Path:
        """Full path to the cache database."""
        return self.CACHE_DIR / self.CACHE_DB_NAME

    @property
    def exam_db_path(self) -> Path:
        """Full path to the exam database."""
        return self.CACHE_DIR / self.EXAM_DB_NAME

    @property
    def device_file_path(self) -> Path:
        """Full path to the device keyring file."""
        return self.CACHE_DIR / self.DEVICE_FILE_NAME

    @field_validator("QUOTA_EVICTION_FRACTION")
    @classmethod
    def validate_eviction_fraction(cls, v: float) -> float:
        """Eviction must remove something and never more than everything."""
        if not 0.0 < v <= 1.0:
            raise ValueError("QUOTA_EVICTION_FRACTION must be in (0, 1]")
        return v

    @field_validator("BACKEND_URL")
    @classmethod
    def normalize_backend_url(cls, v: str | None) -> str | None:
        """Strip trailing slashes and treat blank values as unset."""
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @model_validator(mode="after")
    def validate_distinct_files(self) -> Settings:
        """Ensure the cache, exam and device files do not collide."""
        names = [self.CACHE_DB_NAME, self.EXAM_DB_NAME, self.DEVICE_FILE_NAME]
        if len(set(names)) != len(names):
            raise ValueError(
                "CACHE_DB_NAME, EXAM_DB_NAME and DEVICE_FILE_NAME must be distinct"
            )
        return self

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with secrets redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_DB_NAME": self.CACHE_DB_NAME,
            "EXAM_DB_NAME": self.EXAM_DB_NAME,
            "DEVICE_FILE_NAME": self.DEVICE_FILE_NAME,
            "CACHE_ENABLED": self.CACHE_ENABLED,
            "DEFAULT_TTL_SECONDS": self.DEFAULT_TTL_SECONDS,
            "MAX_ENTRIES_PER_STORE": self.MAX_ENTRIES_PER_STORE,
            "QUOTA_EVICTION_FRACTION": self.QUOTA_EVICTION_FRACTION,
            "MAX_CACHE_BYTES": self.MAX_CACHE_BYTES,
            "EXAM_RETENTION_DAYS": self.EXAM_RETENTION_DAYS,
            "SWEEP_INTERVAL_SECONDS": self.SWEEP_INTERVAL_SECONDS,
            "BACKEND_URL": self.BACKEND_URL,
            "BACKEND_API_KEY": redact(self.BACKEND_API_KEY),
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
