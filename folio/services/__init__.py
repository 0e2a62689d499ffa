"""
Service layer infrastructure - resilience patterns for external API calls.

Provides:
- CacheManager: TTL cache that can still serve expired entries
- CircuitBreaker: Stops calling providers that keep failing
- ErrorClassifier: Maps raw failures onto ErrorKind
- RequestDeduplicator: Prevents duplicate concurrent requests
- ProviderHttpClient: Shared httpx transport for provider adapters
- StatsCollector: Per-provider counters
- with_fallback: ordered provider substitution

The orchestrator lives in folio.services.orchestrator; it depends on the
provider contract in folio.datasource and is not re-exported here.
"""

from folio.services.errors import (
    ServiceError,
    RequestTimeoutError,
    BudgetExhaustedError,
    RateLimitError,
    AuthenticationError,
    InvalidResponseError,
    ProviderHTTPError,
    FallbackExhaustedError,
)
from folio.services.cache import CacheManager, CacheEntry, CacheStats
from folio.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from folio.services.classifier import ErrorClassifier, ErrorKind, classify
from folio.services.deduplicator import RequestDeduplicator
from folio.services.client import (
    ProviderHttpClient,
    close_http_client,
    get_http_client,
)
from folio.services.fallback import with_fallback
from folio.services.stats import StatsCollector
from folio.services.ttl import Tier, get_cache_ttl

__all__ = [
    # Errors
    "ServiceError",
    "RequestTimeoutError",
    "BudgetExhaustedError",
    "RateLimitError",
    "AuthenticationError",
    "InvalidResponseError",
    "ProviderHTTPError",
    "FallbackExhaustedError",
    # Cache
    "CacheManager",
    "CacheEntry",
    "CacheStats",
    "Tier",
    "get_cache_ttl",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Classification
    "ErrorClassifier",
    "ErrorKind",
    "classify",
    # Deduplicator
    "RequestDeduplicator",
    # Client
    "ProviderHttpClient",
    "get_http_client",
    "close_http_client",
    # Fallback
    "with_fallback",
    # Stats
    "StatsCollector",
]
