"""Remote backend access."""

from schoolcache.remote.client import BackendClient, TransientBackendError

__all__ = ["BackendClient", "TransientBackendError"]
