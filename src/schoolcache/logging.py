"""
Structured logging for the offline cache.

Provides:
- Context variables for session_id, store and operation, read with current_context()
- JSONFormatter for machine-readable logs to file
- ContextRichHandler for console output with a context prefix
- ContextLogger wrapper that attaches context to all log calls
- setup_logging() that configures both file and console handlers
- Context manager log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
_store_var: ContextVar[str | None] = ContextVar("store", default=None)
_operation_var: ContextVar[str | None] = ContextVar("operation", default=None)


_CONTEXT_VARS = (
    ("session_id", _session_id_var),
    ("store", _store_var),
    ("operation", _operation_var),
)


def current_context() -> dict[str, str]:
    """The logging context fields that are currently set."""
    return {name: value for name, var in _CONTEXT_VARS if (value := var.get())}


@contextmanager
def log_context(
    session_id: str | None = None,
    store: str | None = None,
    operation: str | None = None,
) -> Generator[None, None, None]:
    """Set logging context fields for the duration of the block.

    Fields left as None keep their enclosing value.
    """
    values = {"session_id": session_id, "store": store, "operation": operation}
    tokens = [
        (var, var.set(values[name]))
        for name, var in _CONTEXT_VARS
        if values[name] is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_obj.update(current_context())

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


_CONTEXT_STYLES = {"session_id": "dim", "store": "cyan", "operation": "magenta"}


class ContextRichHandler(RichHandler):
    """Rich handler that prefixes the level with the active store and operation."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        context = current_context()
        if not context:
            return level_text

        if "session_id" in context:
            context["session_id"] = context["session_id"][:8]
        prefix = Text(" ").join(
            Text(value, style=_CONTEXT_STYLES[name]) for name, value in context.items()
        )
        return Text.assemble(level_text, " ", prefix)


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Keyword arguments are collected into the record's ``extra`` payload
    together with the active logging context.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args: Any, exc_info: bool = False, **fields: Any) -> None:
        payload = {**fields.pop("extra", {}), **current_context(), **fields}
        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": payload})

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.INFO, msg, *args, **fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.WARNING, msg, *args, **fields)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **fields)

    def exception(self, msg: str, *args: Any, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **fields)


_setup_done: bool = False


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Configure the ``schoolcache`` logger tree.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: JSON-lines log file; omitted means no file output.
        console_output: Whether to log to stderr through rich.
    """
    global _setup_done

    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger("schoolcache")
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        rich_handler.setLevel(level)
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ("httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith("schoolcache"):
        name = f"schoolcache.{name}"

    return ContextLogger(logging.getLogger(name))
