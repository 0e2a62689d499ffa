"""
DataSourceOrchestrator - Cache-first, circuit-aware provider fallback.

Features:
- Fresh cache entries short-circuit every provider call
- Providers are tried one at a time in priority order (fetch_with_fallback)
  or fanned out under a bounded semaphore and merged (fetch_with_merge)
- Providers that accept many keys per call are fed in chunks (fetch_batch)
- Failures are classified, recorded as FetchError values and fed to the
  per-provider circuit breaker; nothing is raised past this boundary
- Stale cache entries are served when every provider fails
- Identical concurrent calls share one execution

Usage:
    orchestrator = create_orchestrator()
    result = await orchestrator.fetch_with_fallback(
        FetchRequest(key="AAPL", providers=quote_providers, cache_key_prefix="quotes")
    )
    if result.data is None:
        ...  # every provider failed and nothing was cached
"""

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable, Hashable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

from loguru import logger

from folio.datasource.base import ProviderAdapter
from folio.services.cache import CacheEntry, CacheManager
from folio.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    Clock,
)
from folio.services.classifier import ErrorKind
from folio.services.deduplicator import RequestDeduplicator
from folio.services.errors import (
    BudgetExhaustedError,
    FallbackExhaustedError,
    InvalidResponseError,
)
from folio.services.fallback import with_fallback
from folio.services.stats import StatsCollector
from folio.services.ttl import Tier, get_cache_ttl
from folio.settings import Settings, global_settings

T = TypeVar("T")

SOURCE_CACHE = "cache"
SOURCE_STALE = "stale-cache"
SOURCE_MERGED = "merged"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class FetchRequest(Generic[T]):
    """One logical fetch across a chain of providers."""

    key: str
    providers: Sequence[ProviderAdapter[T]]
    cache_key_prefix: str
    tier: Tier = "free"
    allow_stale: bool = True
    bypass_cache: bool = False
    cache_ttl: timedelta | None = None  # Overrides the tier TTL
    context: dict[str, Any] = field(default_factory=dict)
    deduplicate: bool = True
    timeout: float | None = None  # Overall budget; orchestrator default if None


@dataclass(frozen=True)
class FetchError:
    """A classified provider failure."""

    provider: str
    code: ErrorKind
    message: str
    original_error: BaseException | None = field(
        default=None, repr=False, compare=False
    )

    def to_dict(self) -> dict[str, str]:
        return {"provider": self.provider, "code": self.code.value, "message": self.message}


@dataclass(frozen=True)
class FetchMetadata:
    providers_attempted: tuple[str, ...] = ()
    providers_failed: tuple[str, ...] = ()
    total_duration_ms: float = 0.0
    circuit_breaker_triggered: bool = False
    deduplicated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers_attempted": list(self.providers_attempted),
            "providers_failed": list(self.providers_failed),
            "total_duration_ms": round(self.total_duration_ms, 2),
            "circuit_breaker_triggered": self.circuit_breaker_triggered,
            "deduplicated": self.deduplicated,
        }


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """
    Outcome of an orchestrated fetch.

    `data` is None only when every attempted provider failed and no usable
    cache entry existed. `cached` is True only when no provider was called.
    `age` is the cache entry age in seconds (0 for fresh provider data,
    None when there is no data).
    """

    data: T | None
    source: str
    cached: bool
    timestamp: datetime
    age: float | None
    errors: tuple[FetchError, ...] = ()
    metadata: FetchMetadata = field(default_factory=FetchMetadata)

    @property
    def ok(self) -> bool:
        return self.data is not None

    @property
    def rate_limited(self) -> bool:
        return any(e.code == ErrorKind.RATE_LIMIT for e in self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "cached": self.cached,
            "timestamp": self.timestamp.isoformat(),
            "age": self.age,
            "errors": [e.to_dict() for e in self.errors],
            "metadata": self.metadata.to_dict(),
        }


def default_merge(results: list[Any]) -> Any:
    """Concatenate list results; otherwise keep the first success."""
    if results and all(isinstance(r, list) for r in results):
        return [item for r in results for item in r]
    return results[0]


def dedupe_list(items: list[Any], key: Callable[[Any], Hashable]) -> list[Any]:
    """Drop items whose key was already seen, keeping first-seen order."""
    seen: set[Hashable] = set()
    unique = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        unique.append(item)
    return unique


@dataclass(frozen=True)
class BatchRequest(Generic[T]):
    """Many keys against one provider that can fetch several per call."""

    keys: Sequence[str]
    provider: ProviderAdapter[T]
    cache_key_prefix: str
    tier: Tier = "free"
    allow_stale: bool = True
    bypass_cache: bool = False
    cache_ttl: timedelta | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(frozen=True)
class BatchSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    cached: int = 0
    fresh: int = 0
    stale: int = 0
    total_duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**dataclasses.asdict(self), "total_duration_ms": round(self.total_duration_ms, 2)}


@dataclass(frozen=True)
class BatchResult(Generic[T]):
    """
    Per-key outcome of a batched fetch.

    Every requested key lands in exactly one of `results` (fresh, cached or
    stale data) or `errors` (the failures that left it without data; empty
    when the provider's circuit was open).
    """

    results: dict[str, FetchResult[T]]
    errors: dict[str, tuple[FetchError, ...]]
    summary: BatchSummary


class _ProviderFailed(Exception):
    """Carries the classified failure of one provider call."""

    def __init__(self, error: FetchError):
        self.error = error
        super().__init__(error.message)


@dataclass
class _Attempts:
    attempted: list[str] = field(default_factory=list)
    errors: list[FetchError] = field(default_factory=list)
    triggered: bool = False


def _callable_name(fn: Callable[..., Any] | None) -> str:
    if fn is None:
        return "-"
    return f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}"


class DataSourceOrchestrator:
    """
    Runs FetchRequests against provider chains.

    All collaborators are injected so tests can share a fake clock between
    the cache and the circuit breakers.
    """

    def __init__(
        self,
        cache: CacheManager | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        stats: StatsCollector | None = None,
        deduplicator: RequestDeduplicator | None = None,
        provider_concurrency: int = 5,
        merge_concurrency: int = 5,
        timeout: float = 30.0,
        clock: Clock = datetime.now,
    ):
        self.cache = cache or CacheManager(clock=clock)
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock)
        self.stats = stats or StatsCollector()
        self.deduplicator = deduplicator or RequestDeduplicator()
        self.provider_concurrency = provider_concurrency
        self.merge_concurrency = merge_concurrency
        self.timeout = timeout
        self._clock = clock
        self._provider_semaphores: dict[str, asyncio.Semaphore] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_with_fallback(self, request: FetchRequest[T]) -> FetchResult[T]:
        """Try providers in priority order until one succeeds."""
        cache_key = self._cache_key(request.cache_key_prefix, request.key, request.context)
        if not request.deduplicate:
            return await self._fetch_with_fallback(request, cache_key)

        return await self._shared(
            self._flight_key("fallback", request, cache_key),
            lambda: self._fetch_with_fallback(request, cache_key),
        )

    async def fetch_with_merge(
        self,
        request: FetchRequest[T],
        merge: Callable[[list[Any]], Any] | None = None,
        dedupe_key: Callable[[Any], Hashable] | None = None,
        min_providers: int = 1,
    ) -> FetchResult[Any]:
        """
        Query every eligible provider concurrently and merge the successes.

        Args:
            merge: Reducer over successful results in priority order
                (default: concatenate lists, else first success)
            dedupe_key: For list output, drop items with a repeated key
            min_providers: Successes required for a positive result
        """
        cache_key = self._cache_key(request.cache_key_prefix, request.key, request.context)

        def run():
            return self._fetch_with_merge(
                request, cache_key, merge or default_merge, dedupe_key, min_providers
            )

        if not request.deduplicate:
            return await run()
        return await self._shared(
            self._flight_key(
                "merge",
                request,
                cache_key,
                _callable_name(merge),
                _callable_name(dedupe_key),
                min_providers,
            ),
            run,
        )

    async def batch_fetch(
        self, requests: Sequence[FetchRequest[Any]]
    ) -> list[FetchResult[Any]]:
        """
        Run many fallback fetches concurrently, results in input order.

        Upstream volume stays bounded by the per-provider semaphores.
        """
        results = await asyncio.gather(
            *(self.fetch_with_fallback(request) for request in requests)
        )
        return list(results)

    async def fetch_batch(self, request: BatchRequest[T]) -> BatchResult[T]:
        """
        Fetch many keys from one provider using its bulk endpoint.

        Keys with a fresh cache entry are served from cache. The rest are
        split into chunks of `provider.max_batch_size` and fetched in
        parallel; a failed chunk fails (or falls back to stale cache for)
        every key in it.
        """
        started = time.perf_counter()
        deadline = started + (request.timeout or self.timeout)
        provider = request.provider
        keys = list(dict.fromkeys(request.keys))

        results: dict[str, FetchResult[T]] = {}
        errors: dict[str, tuple[FetchError, ...]] = {}
        pending: list[str] = []
        for key in keys:
            cache_key = self._cache_key(request.cache_key_prefix, key, request.context)
            cached = await self._fresh_from_cache(request, cache_key, started)
            if cached is not None:
                results[key] = cached
            else:
                pending.append(key)

        size = max(1, provider.max_batch_size)
        chunks = [pending[i : i + size] for i in range(0, len(pending), size)]
        outcomes = await asyncio.gather(
            *(self._fetch_chunk(request, chunk, deadline) for chunk in chunks)
        )

        for chunk, (data, run) in zip(chunks, outcomes):
            for key in chunk:
                cache_key = self._cache_key(request.cache_key_prefix, key, request.context)
                value = None if data is None else data.get(key)
                if value is not None:
                    await self.cache.set(cache_key, value, self._ttl(request))
                    results[key] = FetchResult(
                        data=value,
                        source=provider.name,
                        cached=False,
                        timestamp=self._clock(),
                        age=0.0,
                        metadata=FetchMetadata(
                            providers_attempted=tuple(run.attempted),
                            total_duration_ms=self._elapsed_ms(started),
                        ),
                    )
                    continue

                key_errors = list(run.errors)
                if data is not None:
                    key_errors.append(
                        FetchError(
                            provider.name,
                            ErrorKind.INVALID_RESPONSE,
                            f"{provider.name} returned no data for {key}",
                        )
                    )
                stale = await self._stale_from_cache(
                    request, cache_key, run.attempted, key_errors, run.triggered, started
                )
                if stale is not None:
                    results[key] = stale
                else:
                    errors[key] = tuple(key_errors)

        sources = [r.source for r in results.values()]
        summary = BatchSummary(
            total=len(keys),
            successful=len(results),
            failed=len(errors),
            cached=sources.count(SOURCE_CACHE),
            fresh=sources.count(provider.name),
            stale=sources.count(SOURCE_STALE),
            total_duration_ms=self._elapsed_ms(started),
        )
        logger.info(
            f"Batch {request.cache_key_prefix} via {provider.name}: "
            f"{summary.successful}/{summary.total} ok ({summary.cached} cached, "
            f"{len(chunks)} upstream calls)"
        )
        # Input order, as requested
        return BatchResult(
            results={k: results[k] for k in keys if k in results},
            errors={k: errors[k] for k in keys if k in errors},
            summary=summary,
        )

    def get_stats(self) -> dict[str, Any]:
        collected = self.stats.get_stats()
        return {
            "providers": collected["providers"],
            "cache": {
                "by_prefix": collected["cache"],
                "store": self.cache.get_stats().to_dict(),
            },
            "exhausted": collected["exhausted"],
            "circuit_breakers": self.breakers.get_all_status(),
            "deduplicator": self.deduplicator.get_stats().to_dict(),
        }

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    async def _fetch_with_fallback(
        self, request: FetchRequest[T], cache_key: str
    ) -> FetchResult[T]:
        started = time.perf_counter()
        deadline = started + (request.timeout or self.timeout)

        cached = await self._fresh_from_cache(request, cache_key, started)
        if cached is not None:
            return cached

        run = _Attempts()

        def candidates() -> Iterator[tuple[ProviderAdapter[T], CircuitBreaker]]:
            # Circuit state is read when each provider's turn comes up
            for provider in self._ordered(request.providers):
                breaker = self.breakers.get(provider.name)
                if breaker.allow_request():
                    yield provider, breaker
                    continue
                run.triggered = True
                self.stats.record_circuit_skip(provider.name)
                logger.debug(f"Skipping {provider.name}: circuit {breaker.state.value}")

        def attempt(candidate: tuple[ProviderAdapter[T], CircuitBreaker]) -> Awaitable[T]:
            provider, breaker = candidate
            return self._call(
                provider,
                breaker,
                deadline,
                lambda: provider.fetch(request.key, dict(request.context)),
                on_start=lambda: run.attempted.append(provider.name),
            )

        try:
            (provider, _), data = await with_fallback(
                candidates(), attempt, on_error=lambda _c, e: run.errors.append(e.error)
            )
        except FallbackExhaustedError:
            return await self._exhausted(
                request, cache_key, run.attempted, run.errors, run.triggered, started
            )

        await self.cache.set(cache_key, data, self._ttl(request))
        return FetchResult(
            data=data,
            source=provider.name,
            cached=False,
            timestamp=self._clock(),
            age=0.0,
            errors=tuple(run.errors),
            metadata=FetchMetadata(
                providers_attempted=tuple(run.attempted),
                providers_failed=tuple(e.provider for e in run.errors),
                total_duration_ms=self._elapsed_ms(started),
                circuit_breaker_triggered=run.triggered,
            ),
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def _fetch_with_merge(
        self,
        request: FetchRequest[Any],
        cache_key: str,
        merge: Callable[[list[Any]], Any],
        dedupe_key: Callable[[Any], Hashable] | None,
        min_providers: int,
    ) -> FetchResult[Any]:
        started = time.perf_counter()
        deadline = started + (request.timeout or self.timeout)

        cached = await self._fresh_from_cache(request, cache_key, started)
        if cached is not None:
            return cached

        eligible: list[tuple[ProviderAdapter[Any], CircuitBreaker]] = []
        triggered = False
        for provider in self._ordered(request.providers):
            breaker = self.breakers.get(provider.name)
            if breaker.allow_request():
                eligible.append((provider, breaker))
            else:
                triggered = True
                self.stats.record_circuit_skip(provider.name)

        semaphore = asyncio.Semaphore(self.merge_concurrency)
        called: set[str] = set()

        async def run(provider: ProviderAdapter[Any], breaker: CircuitBreaker):
            async with semaphore:
                try:
                    data = await self._call(
                        provider,
                        breaker,
                        deadline,
                        lambda: provider.fetch(request.key, dict(request.context)),
                        on_start=lambda: called.add(provider.name),
                    )
                except _ProviderFailed as e:
                    return None, e.error
                return data, None

        outcomes = await asyncio.gather(*(run(p, b) for p, b in eligible))

        attempted = [p.name for p, _ in eligible if p.name in called]
        successes: list[tuple[str, Any]] = []
        errors: list[FetchError] = []
        for (provider, _), (data, error) in zip(eligible, outcomes):
            if error is not None:
                errors.append(error)
            else:
                successes.append((provider.name, data))

        if not successes or len(successes) < min_providers:
            return await self._exhausted(
                request, cache_key, attempted, errors, triggered, started
            )

        merged = merge([data for _, data in successes])
        deduplicated = False
        if dedupe_key is not None and isinstance(merged, list):
            unique = dedupe_list(merged, dedupe_key)
            deduplicated = len(unique) < len(merged)
            merged = unique

        await self.cache.set(cache_key, merged, self._ttl(request))
        source = successes[0][0] if len(successes) == 1 else SOURCE_MERGED
        logger.info(
            f"Merged {request.cache_key_prefix}:{request.key} from "
            f"{[name for name, _ in successes]} ({len(errors)} failed)"
        )
        return FetchResult(
            data=merged,
            source=source,
            cached=False,
            timestamp=self._clock(),
            age=0.0,
            errors=tuple(errors),
            metadata=FetchMetadata(
                providers_attempted=tuple(attempted),
                providers_failed=tuple(e.provider for e in errors),
                total_duration_ms=self._elapsed_ms(started),
                circuit_breaker_triggered=triggered,
                deduplicated=deduplicated,
            ),
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def _fetch_chunk(
        self, request: BatchRequest[T], chunk: list[str], deadline: float
    ) -> tuple[dict[str, T] | None, _Attempts]:
        provider = request.provider
        run = _Attempts()
        breaker = self.breakers.get(provider.name)
        if not breaker.allow_request():
            run.triggered = True
            self.stats.record_circuit_skip(provider.name)
            return None, run

        try:
            data = await self._call(
                provider,
                breaker,
                deadline,
                lambda: provider.fetch_many(chunk, dict(request.context)),
                on_start=lambda: run.attempted.append(provider.name),
            )
        except _ProviderFailed as e:
            run.errors.append(e.error)
            return None, run
        return data, run

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _call(
        self,
        provider: ProviderAdapter[Any],
        breaker: CircuitBreaker,
        deadline: float,
        invoke: Callable[[], Awaitable[Any]],
        on_start: Callable[[], None] | None = None,
    ) -> Any:
        """
        Make one upstream call for a provider whose breaker admitted it.

        The wait for the provider's semaphore and the call itself are both
        bounded by the overall deadline. Outcomes are recorded on the breaker
        and in stats; failures are raised as _ProviderFailed.
        """
        started = time.perf_counter()
        try:
            semaphore = self._semaphore_for(provider.name)
            await self._acquire(semaphore, provider, deadline)
            try:
                remaining = deadline - time.perf_counter()
                if remaining <= 0:
                    raise BudgetExhaustedError(provider.name)
                if on_start is not None:
                    on_start()
                started = time.perf_counter()
                data = await asyncio.wait_for(
                    invoke(), timeout=min(provider.timeout, remaining)
                )
            finally:
                semaphore.release()
            if data is None:
                raise InvalidResponseError(
                    f"{provider.name} returned no data", service_id=provider.name
                )
        except asyncio.CancelledError:
            breaker.release_request()
            raise
        except Exception as e:
            raise _ProviderFailed(
                self._record_failure(provider, breaker, e, self._elapsed_ms(started))
            ) from e

        breaker.record_success()
        self.stats.record_success(provider.name, self._elapsed_ms(started))
        return data

    @staticmethod
    async def _acquire(
        semaphore: asyncio.Semaphore, provider: ProviderAdapter[Any], deadline: float
    ) -> None:
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            raise BudgetExhaustedError(provider.name)
        try:
            await asyncio.wait_for(semaphore.acquire(), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise BudgetExhaustedError(provider.name) from e

    def _record_failure(
        self,
        provider: ProviderAdapter[Any],
        breaker: CircuitBreaker,
        exc: Exception,
        latency_ms: float,
    ) -> FetchError:
        message = str(exc) or type(exc).__name__

        if isinstance(exc, BudgetExhaustedError):
            # The provider was never called
            breaker.release_request()
            logger.debug(f"Skipping {provider.name}: {message}")
            return FetchError(provider.name, ErrorKind.TIMEOUT, message, exc)

        kind = provider.classify_error(exc)
        self.stats.record_failure(provider.name, kind, latency_ms)

        if kind == ErrorKind.AUTH_ERROR:
            breaker.disable(message)
        elif kind == ErrorKind.INVALID_RESPONSE:
            # Contract drift: loud, but says nothing about availability
            breaker.release_request()
            logger.error(f"Invalid response from {provider.name}: {message}")
        else:
            trips = breaker.trip_count
            breaker.record_failure()
            if breaker.trip_count > trips:
                self.stats.record_circuit_trip(provider.name)
            logger.warning(f"Provider {provider.name} failed ({kind.value}): {message}")

        return FetchError(provider.name, kind, message, exc)

    async def _fresh_from_cache(
        self, request: FetchRequest[Any] | BatchRequest[Any], cache_key: str, started: float
    ) -> FetchResult[Any] | None:
        if request.bypass_cache:
            return None

        entry = await self.cache.get(cache_key)
        if entry is None:
            self.stats.record_cache_miss(request.cache_key_prefix)
            return None

        self.stats.record_cache_hit(request.cache_key_prefix)
        return self._from_entry(entry, SOURCE_CACHE, True, (), (), False, started)

    async def _stale_from_cache(
        self,
        request: FetchRequest[Any] | BatchRequest[Any],
        cache_key: str,
        attempted: Sequence[str],
        errors: Sequence[FetchError],
        triggered: bool,
        started: float,
    ) -> FetchResult[Any] | None:
        if not request.allow_stale:
            return None
        entry = await self.cache.get(cache_key, allow_expired=True)
        if entry is None:
            return None

        self.stats.record_stale_served(request.cache_key_prefix)
        age = entry.age(self._clock()).total_seconds()
        logger.info(f"Providers failed for {cache_key}, serving stale cache ({age:.0f}s old)")
        return self._from_entry(
            entry, SOURCE_STALE, not attempted, attempted, errors, triggered, started
        )

    async def _exhausted(
        self,
        request: FetchRequest[Any],
        cache_key: str,
        attempted: list[str],
        errors: list[FetchError],
        triggered: bool,
        started: float,
    ) -> FetchResult[Any]:
        stale = await self._stale_from_cache(
            request, cache_key, attempted, errors, triggered, started
        )
        if stale is not None:
            return stale

        self.stats.record_exhausted()
        logger.warning(
            f"All providers failed for {cache_key}: "
            + (", ".join(f"{e.provider}={e.code.value}" for e in errors) or "none eligible")
        )
        return FetchResult(
            data=None,
            source=SOURCE_NONE,
            cached=False,
            timestamp=self._clock(),
            age=None,
            errors=tuple(errors),
            metadata=FetchMetadata(
                providers_attempted=tuple(attempted),
                providers_failed=tuple(e.provider for e in errors),
                total_duration_ms=self._elapsed_ms(started),
                circuit_breaker_triggered=triggered,
            ),
        )

    def _from_entry(
        self,
        entry: CacheEntry[Any],
        source: str,
        cached: bool,
        attempted: Sequence[str],
        errors: Sequence[FetchError],
        triggered: bool,
        started: float,
    ) -> FetchResult[Any]:
        now = self._clock()
        return FetchResult(
            data=entry.value,
            source=source,
            cached=cached,
            timestamp=now,
            age=entry.age(now).total_seconds(),
            errors=tuple(errors),
            metadata=FetchMetadata(
                providers_attempted=tuple(attempted),
                providers_failed=tuple(e.provider for e in errors),
                total_duration_ms=self._elapsed_ms(started),
                circuit_breaker_triggered=triggered,
            ),
        )

    async def _shared(self, key: str, run: Callable[[], Any]) -> FetchResult[Any]:
        result, shared = await self.deduplicator.dedupe(key, run)
        if not shared:
            return result
        return dataclasses.replace(
            result, metadata=dataclasses.replace(result.metadata, deduplicated=True)
        )

    def _semaphore_for(self, provider: str) -> asyncio.Semaphore:
        if provider not in self._provider_semaphores:
            self._provider_semaphores[provider] = asyncio.Semaphore(
                self.provider_concurrency
            )
        return self._provider_semaphores[provider]

    def _cache_key(self, prefix: str, key: str, context: dict[str, Any]) -> str:
        # Context changes what providers return, so it is part of the identity
        extras = [f"{name}={context[name]}" for name in sorted(context)]
        return self.cache.generate_key(prefix, key, *extras)

    @staticmethod
    def _flight_key(
        mode: str, request: FetchRequest[Any], cache_key: str, *extra: Any
    ) -> str:
        """Callers share an execution only if every result-shaping field matches."""
        ttl = request.cache_ttl.total_seconds() if request.cache_ttl else None
        providers = ",".join(f"{p.name}@{p.priority}" for p in request.providers)
        parts = (
            mode,
            cache_key,
            request.tier,
            request.allow_stale,
            request.bypass_cache,
            ttl,
            request.timeout,
            providers,
            *extra,
        )
        return "|".join(str(part) for part in parts)

    @staticmethod
    def _ttl(request: FetchRequest[Any] | BatchRequest[Any]) -> timedelta:
        return request.cache_ttl or get_cache_ttl(request.cache_key_prefix, request.tier)

    @staticmethod
    def _ordered(providers: Sequence[ProviderAdapter[Any]]) -> list[ProviderAdapter[Any]]:
        # sorted() is stable: equal priorities keep input order
        return sorted(providers, key=lambda p: p.priority)

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000


def create_orchestrator(
    settings: Settings | None = None,
    clock: Clock = datetime.now,
) -> DataSourceOrchestrator:
    """Build an orchestrator wired from settings."""
    settings = settings or global_settings
    breaker_config = CircuitBreakerConfig(
        failure_threshold=settings.circuit_failure_threshold,
        failure_window=timedelta(seconds=settings.circuit_failure_window),
        reset_timeout=timedelta(seconds=settings.circuit_reset_timeout),
    )
    return DataSourceOrchestrator(
        cache=CacheManager(
            max_size=settings.cache_max_size, clock=clock, debug=settings.debug
        ),
        breakers=CircuitBreakerRegistry(default_config=breaker_config, clock=clock),
        stats=StatsCollector(debug=settings.debug),
        deduplicator=RequestDeduplicator(debug=settings.debug),
        provider_concurrency=settings.provider_concurrency,
        merge_concurrency=settings.merge_concurrency,
        timeout=settings.orchestrator_timeout,
        clock=clock,
    )
