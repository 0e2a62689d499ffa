import asyncio
from datetime import datetime, timedelta
from typing import Any

import pytest

from folio.datasource.base import ProviderAdapter
from folio.services.cache import CacheManager
from folio.services.circuit_breaker import CircuitBreakerRegistry
from folio.services.orchestrator import DataSourceOrchestrator
from folio.services.stats import StatsCollector


class FakeClock:
    """Manually advanced wall clock shared by cache and breakers."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 14, 30)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider(ProviderAdapter[Any]):
    """
    Scripted provider.

    `outcomes` is consumed one entry per call (the last one repeats). An
    exception instance is raised, a callable is called with the key, and
    anything else is returned as-is.
    """

    def __init__(
        self,
        name: str,
        *outcomes: Any,
        priority: int = 100,
        timeout: float = 5.0,
        delay: float = 0.0,
    ):
        super().__init__(client=object(), timeout=timeout, priority=priority)
        self._name = name
        self._outcomes = list(outcomes) or [f"{name}-data"]
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def name(self) -> str:
        return self._name

    async def _fetch(self, key: str, context: dict[str, Any]) -> Any:
        self.calls.append(key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self._outcomes[min(len(self.calls), len(self._outcomes)) - 1]
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return outcome(key)
            return outcome
        finally:
            self.in_flight -= 1


class FakeBulkProvider(FakeProvider):
    """
    Scripted provider with a bulk endpoint.

    Outcomes are consumed one per fetch_many call. A callable is applied to
    every key of the chunk; keys it maps to None are left out of the result.
    """

    def __init__(self, name: str, *outcomes: Any, max_batch_size: int = 2, **kwargs: Any):
        super().__init__(name, *outcomes, **kwargs)
        self.max_batch_size = max_batch_size
        self.batches: list[list[str]] = []

    async def _fetch_many(self, keys: list[str], context: dict[str, Any]) -> dict[str, Any]:
        self.batches.append(list(keys))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self._outcomes[min(len(self.batches), len(self._outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        values = {key: outcome(key) if callable(outcome) else outcome for key in keys}
        return {key: value for key, value in values.items() if value is not None}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheManager:
    return CacheManager(clock=clock)


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def orchestrator(
    cache: CacheManager, breakers: CircuitBreakerRegistry, clock: FakeClock
) -> DataSourceOrchestrator:
    return DataSourceOrchestrator(
        cache=cache,
        breakers=breakers,
        stats=StatsCollector(),
        clock=clock,
    )


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_bulk_provider():
    return FakeBulkProvider
