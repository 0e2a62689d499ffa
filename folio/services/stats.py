"""
StatsCollector - Per-provider observability counters for the orchestrator.
"""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from folio.services.classifier import ErrorKind


@dataclass
class ProviderStats:
    """Counters for a single provider."""

    successes: int = 0
    failures: int = 0
    failures_by_kind: dict[str, int] = field(default_factory=dict)
    skipped: int = 0  # Calls skipped because the circuit was open
    circuit_trips: int = 0
    total_latency_ms: float = 0.0

    @property
    def calls(self) -> int:
        return self.successes + self.failures

    @property
    def avg_latency_ms(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_latency_ms / self.calls

    def to_dict(self) -> dict[str, Any]:
        return {
            "successes": self.successes,
            "failures": self.failures,
            "failures_by_kind": dict(self.failures_by_kind),
            "skipped": self.skipped,
            "circuit_trips": self.circuit_trips,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
        }


@dataclass
class CacheCounters:
    hits: int = 0
    misses: int = 0
    stale_served: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_served": self.stale_served,
        }


class StatsCollector:
    """
    Records the outcome of every provider call and cache lookup.

    Usage:
        stats = StatsCollector()
        stats.record_success("tiingo", latency_ms=120.5)
        stats.record_failure("finnhub", ErrorKind.TIMEOUT, latency_ms=5000)
        stats.get_stats()["providers"]["tiingo"]["avg_latency_ms"]
    """

    def __init__(self, debug: bool = False):
        self._providers: dict[str, ProviderStats] = {}
        self._cache: dict[str, CacheCounters] = {}
        self._exhausted = 0
        self._debug = debug

    def _provider(self, name: str) -> ProviderStats:
        if name not in self._providers:
            self._providers[name] = ProviderStats()
        return self._providers[name]

    def _prefix(self, prefix: str) -> CacheCounters:
        if prefix not in self._cache:
            self._cache[prefix] = CacheCounters()
        return self._cache[prefix]

    def record_success(self, provider: str, latency_ms: float) -> None:
        stats = self._provider(provider)
        stats.successes += 1
        stats.total_latency_ms += latency_ms
        self._log(f"SUCCESS: {provider} in {latency_ms:.0f}ms")

    def record_failure(self, provider: str, kind: ErrorKind, latency_ms: float) -> None:
        stats = self._provider(provider)
        stats.failures += 1
        stats.failures_by_kind[kind.value] = stats.failures_by_kind.get(kind.value, 0) + 1
        stats.total_latency_ms += latency_ms
        self._log(f"FAILURE: {provider} {kind.value} after {latency_ms:.0f}ms")

    def record_circuit_skip(self, provider: str) -> None:
        self._provider(provider).skipped += 1

    def record_circuit_trip(self, provider: str) -> None:
        self._provider(provider).circuit_trips += 1

    def record_cache_hit(self, prefix: str) -> None:
        self._prefix(prefix).hits += 1

    def record_cache_miss(self, prefix: str) -> None:
        self._prefix(prefix).misses += 1

    def record_stale_served(self, prefix: str) -> None:
        self._prefix(prefix).stale_served += 1

    def record_exhausted(self) -> None:
        self._exhausted += 1

    def get_stats(self) -> dict[str, Any]:
        return {
            "providers": {
                name: stats.to_dict() for name, stats in self._providers.items()
            },
            "cache": {prefix: c.to_dict() for prefix, c in self._cache.items()},
            "exhausted": self._exhausted,
        }

    def reset(self) -> None:
        self._providers.clear()
        self._cache.clear()
        self._exhausted = 0

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Stats] {message}")
