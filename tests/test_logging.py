"""
Tests for structured logging and the exception hierarchy.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from schoolcache.exceptions import (
    CacheError,
    CacheSerializationError,
    QuotaExceededError,
    UnknownStoreError,
)
from schoolcache.logging import (
    JSONFormatter,
    current_context,
    get_logger,
    log_context,
    setup_logging,
)


class TestLogContext:
    """Test scoped logging context."""

    def test_context_is_scoped(self) -> None:
        with log_context(store="marks", operation="put"):
            assert current_context() == {"store": "marks", "operation": "put"}
            with log_context(operation="evict"):
                assert current_context() == {"store": "marks", "operation": "evict"}
            assert current_context()["operation"] == "put"

        assert current_context() == {}

    def test_context_restored_after_error(self) -> None:
        with pytest.raises(RuntimeError):
            with log_context(session_id="sess-1"):
                raise RuntimeError("boom")

        assert "session_id" not in current_context()

    def test_logger_attaches_context(self) -> None:
        context_logger = get_logger("context_test")
        records: list[logging.LogRecord] = []
        handler = logging.Handler()
        handler.emit = records.append  # type: ignore[method-assign]
        logger = logging.getLogger("schoolcache.context_test")
        logger.addHandler(handler)
        try:
            with log_context(store="students"):
                context_logger.info("Cleared", removed=4)
        finally:
            logger.removeHandler(handler)

        assert records[-1].extra == {"store": "students", "removed": 4}  # type: ignore[attr-defined]


class TestJSONFormatter:
    """Test the file formatter."""

    def test_includes_context_and_extra(self) -> None:
        record = logging.LogRecord("schoolcache.test", logging.INFO, __file__, 1, "hello", (), None)
        record.extra = {"removed": 3}

        with log_context(store="students"):
            payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "hello"
        assert payload["store"] == "students"
        assert payload["extra"] == {"removed": 3}

    def test_log_file_written(self, temp_dir: Path) -> None:
        log_file = temp_dir / "logs" / "cache.jsonl"
        setup_logging("DEBUG", log_file=log_file, console_output=False)

        try:
            get_logger("test").info("Swept", removed=2)
        finally:
            setup_logging("INFO", console_output=False)

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["message"] == "Swept"
        assert record["extra"]["removed"] == 2


class TestExceptions:
    """Test the error taxonomy."""

    def test_context_in_message(self) -> None:
        error = QuotaExceededError("Storage quota exceeded", context={"store": "marks"})

        assert str(error) == "Storage quota exceeded (store='marks')"
        assert isinstance(error, CacheError)

    def test_builtin_compatibility(self) -> None:
        assert issubclass(UnknownStoreError, ValueError)
        assert issubclass(CacheSerializationError, TypeError)

    def test_catchable_as_cache_error(self) -> None:
        with pytest.raises(CacheError):
            raise UnknownStoreError("Unknown cache store: x")
