"""
Read-only client for the managed backend's REST endpoint.

The backend is the source of truth; the cache is only ever populated from
rows returned here. Tables are exposed at ``/rest/v1/{table}`` and filtered
with ``column=eq.value`` query parameters.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from schoolcache.config import Settings
from schoolcache.exceptions import BackendError, ConfigurationError
from schoolcache.logging import get_logger

logger = get_logger(__name__)

REST_PREFIX = "/rest/v1"


class TransientBackendError(BackendError):
    """A failure worth retrying: timeouts, 429 and 5xx responses."""

    pass


class BackendClient:
    """Async client for table reads against the managed backend."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the backend client.

        Args:
            base_url: Backend project URL, without the REST prefix.
            api_key: API key sent as both ``apikey`` and bearer token.
            timeout: Request timeout in seconds.
            client: Pre-built HTTP client (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendClient:
        if not settings.BACKEND_URL or not settings.BACKEND_API_KEY:
            raise ConfigurationError(
                "BACKEND_URL and BACKEND_API_KEY must be set to reach the backend"
            )
        return cls(settings.BACKEND_URL, settings.BACKEND_API_KEY)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    async def fetch_rows(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        select: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows from a table.

        Args:
            table: Table name.
            filters: Equality filters, column -> value.
            select: Column list for the ``select`` parameter.
            limit: Maximum number of rows.

        Returns:
            List of row dicts.

        Raises:
            BackendError: If the request fails or the body is not a list.
        """
        params: dict[str, str] = {"select": select}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if limit is not None:
            params["limit"] = str(limit)

        logger.info("Fetching rows from backend", table=table, filters=list((filters or {}).keys()))
        response = await self._get(table, params)

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                "Failed to parse backend response",
                context={"table": table, "error": str(e)},
            ) from e

        if not isinstance(data, list):
            raise BackendError(
                "Unexpected backend response shape",
                context={"table": table, "type": type(data).__name__},
            )
        return data

    @retry(
        retry=retry_if_exception_type(TransientBackendError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _get(self, table: str, params: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{REST_PREFIX}/{table}"

        try:
            response = await client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise TransientBackendError(
                "Backend request timed out", context={"table": table}
            ) from e
        except httpx.RequestError as e:
            raise BackendError(
                f"Backend request failed: {e}",
                context={"table": table, "error": str(e)},
            ) from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("Transient backend error", table=table, status_code=response.status_code)
            raise TransientBackendError(
                f"Backend error: {response.status_code}",
                context={"table": table, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise BackendError(
                f"Backend error: {response.status_code}",
                context={
                    "table": table,
                    "status_code": response.status_code,
                    "response": response.text[:500] if response.text else None,
                },
            )
        return response
