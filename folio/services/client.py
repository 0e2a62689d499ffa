"""
ProviderHttpClient - Shared async HTTP transport for provider adapters.

One call, one attempt: no caching, no retries, no circuit breaking. Those
concerns belong to the orchestrator. The client only enforces the
per-request timeout and turns HTTP-level problems into typed errors.
"""

import json
from typing import Any

import httpx
from loguru import logger

from folio.services.errors import (
    InvalidResponseError,
    ProviderHTTPError,
    RequestTimeoutError,
)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; FolioTracker/1.0)",
}


class ProviderHttpClient:
    """
    Thin wrapper around a lazily created httpx.AsyncClient.

    Usage:
        client = ProviderHttpClient()
        data = await client.get_json(
            "finnhub",
            "https://finnhub.io/api/v1/quote",
            params={"symbol": "AAPL", "token": key},
            timeout=5.0,
        )
    """

    def __init__(
        self,
        default_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._default_timeout = default_timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout),
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
                transport=self._transport,
            )
        return self._http_client

    async def get(
        self,
        service_id: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Issue a GET and return the 2xx response.

        Raises:
            RequestTimeoutError: If the request times out
            ProviderHTTPError: For non-2xx statuses
            httpx.TransportError: For connection-level failures
        """
        client = self._get_http_client()
        req_timeout = timeout or self._default_timeout

        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=req_timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(service_id, req_timeout) from e

        if response.status_code >= 400:
            logger.debug(f"{service_id} returned HTTP {response.status_code}")
            raise ProviderHTTPError(service_id, response.status_code, response.text)

        return response

    async def get_json(
        self,
        service_id: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """GET a JSON document."""
        response = await self.get(service_id, url, params, headers, timeout)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise InvalidResponseError(
                f"Non-JSON response from '{service_id}': {response.text[:100]}",
                service_id=service_id,
            ) from e

    async def get_text(
        self,
        service_id: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> str:
        """GET a text document (RSS/XML feeds)."""
        response = await self.get(service_id, url, params, headers, timeout)
        return response.text

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ProviderHttpClient closed")

    async def __aenter__(self) -> "ProviderHttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Global client instance
_global_client: ProviderHttpClient | None = None


def get_http_client() -> ProviderHttpClient:
    """Get the global HTTP client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ProviderHttpClient()
    return _global_client


async def close_http_client() -> None:
    """Close the global HTTP client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
