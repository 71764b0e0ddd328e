"""
Custom exception hierarchy for the offline cache.

All exceptions inherit from CacheError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class CacheError(Exception):
    """Base exception for all offline cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(CacheError):
    """Raised when configuration is invalid or missing.

    Examples:
        - BACKEND_URL not set for a command that needs the backend
        - Cache and exam databases pointing at the same file
    """

    pass


class StorageUnavailableError(CacheError):
    """Raised when the embedded store cannot be opened.

    Context should include:
        - path: The database path that failed to open
        - error: The underlying error message
    """

    pass


class QuotaExceededError(CacheError):
    """Raised when a write fails because the storage budget is exhausted.

    Context should include:
        - store: The logical store being written
        - key: The key being written
    """

    pass


class CorruptEntryError(CacheError):
    """Raised when a stored payload fails to deserialize.

    Context should include:
        - codec: Name of the codec that failed
        - error: The decoder error message
    """

    pass


class CacheSerializationError(CacheError, TypeError):
    """Raised when a payload cannot be serialized by the codec."""

    pass


class CacheIOError(CacheError):
    """Raised for any other embedded-store failure.

    Context should include:
        - operation: The cache operation that failed
        - store: The logical store involved, if any
        - error: The underlying error message
    """

    pass


class UnknownStoreError(CacheError, ValueError):
    """Raised when a logical store name is not one of the fixed partitions."""

    pass


class BackendError(CacheError):
    """Raised when a request to the remote backend fails.

    Context should include:
        - table: The table being read
        - status_code: HTTP status code if applicable
    """

    pass


class DecryptionError(CacheError):
    """Raised when exam content or a wrapped key fails to decrypt."""

    pass


class DeviceNotInitializedError(CacheError):
    """Raised when device keys are requested before the device is initialized."""

    pass
