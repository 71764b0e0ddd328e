"""
Pytest configuration and fixtures for offline cache tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from schoolcache.cache import CacheStore, UnsupportedEstimator
from schoolcache.config import Settings, clear_settings_cache
from schoolcache.exams import ExamStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "CACHE_DIR": str(temp_dir / "cache"),
        "CACHE_ENABLED": "true",
        "MAX_ENTRIES_PER_STORE": "500",
        "DEFAULT_TTL_SECONDS": "604800",
        "SWEEP_INTERVAL_SECONDS": "0",
        "BACKEND_URL": "https://project.example.com/",
        "BACKEND_API_KEY": "anon-test-key-1234567890",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance built from the mock environment."""
    clear_settings_cache()
    from schoolcache.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture
async def cache_store(temp_dir: Path, clock: FakeClock) -> AsyncGenerator[CacheStore, None]:
    """An open cache store with a fake clock and payload-based size estimate."""
    store = CacheStore(
        temp_dir / "cache" / "cache.db",
        clock=clock,
        estimator=UnsupportedEstimator(),
    )
    await store.open()
    yield store
    await store.close()


@pytest.fixture
async def exam_store(temp_dir: Path, clock: FakeClock) -> AsyncGenerator[ExamStore, None]:
    """An initialized exam store with a fake clock."""
    store = ExamStore(temp_dir / "cache" / "exams.db", clock=clock)
    await store.init()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
