"""
Provider adapter contract.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from loguru import logger

from folio.services.classifier import ErrorKind, default_classifier
from folio.services.client import ProviderHttpClient
from folio.services.errors import RequestTimeoutError

T = TypeVar("T")


class ProviderAdapter(ABC, Generic[T]):
    """
    Abstract base class for all upstream integrations.

    All adapters should:
    - Use ProviderHttpClient for HTTP requests
    - Return normalised Pydantic models
    - Raise on failure (the orchestrator classifies and substitutes)
    - Never retry internally
    """

    #: Lower value is tried first
    priority: int = 100
    #: Seconds allowed for a single fetch
    timeout: float = 10.0
    #: Keys accepted by one fetch_many call
    max_batch_size: int = 1

    def __init__(
        self,
        client: ProviderHttpClient | None = None,
        timeout: float | None = None,
        priority: int | None = None,
    ):
        from folio.services.client import get_http_client

        self.client = client or get_http_client()
        if timeout is not None:
            self.timeout = timeout
        if priority is not None:
            self.priority = priority

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider (circuit breaker key)."""
        ...

    @abstractmethod
    async def _fetch(self, key: str, context: dict[str, Any]) -> T:
        """Fetch one resource from the upstream API."""
        ...

    async def _fetch_many(self, keys: list[str], context: dict[str, Any]) -> dict[str, T]:
        """
        Fetch several keys; override when the upstream has a bulk endpoint.

        The default issues one _fetch per key concurrently. Keys that fail are
        left out of the result; if every key fails the first error is raised.
        """
        outcomes = await asyncio.gather(
            *(self._fetch(key, context) for key in keys), return_exceptions=True
        )
        results: dict[str, T] = {}
        failures: list[BaseException] = []
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.debug(f"{self.name} failed for {key}: {outcome}")
                failures.append(outcome)
            elif outcome is not None:
                results[key] = outcome
        if failures and not results:
            raise failures[0]
        return results

    def is_configured(self) -> bool:
        """Check if the provider has what it needs (e.g. an API key)."""
        return True

    async def fetch(self, key: str, context: dict[str, Any] | None = None) -> T:
        """
        Fetch `key` under this provider's own timeout.

        The timeout cancels the in-flight request and raises
        RequestTimeoutError, independent of any budget the caller applies.
        """
        try:
            return await asyncio.wait_for(
                self._fetch(key, context or {}), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(self.name, self.timeout) from e

    async def fetch_many(
        self, keys: Sequence[str], context: dict[str, Any] | None = None
    ) -> dict[str, T]:
        """
        Fetch up to `max_batch_size` keys in one call, keyed by input key.

        Same timeout contract as fetch().
        """
        keys = list(keys)
        if len(keys) > self.max_batch_size:
            raise ValueError(
                f"{self.name} accepts at most {self.max_batch_size} keys per call, "
                f"got {len(keys)}"
            )
        try:
            return await asyncio.wait_for(
                self._fetch_many(keys, context or {}), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(self.name, self.timeout) from e

    def classify_error(self, raw: BaseException) -> ErrorKind:
        """Map a raised exception to an ErrorKind. Override for API quirks."""
        return default_classifier.classify(self.name, raw)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} priority={self.priority}>"
