"""
CircuitBreaker - Stops calling a provider that keeps failing.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Provider is failing, requests are blocked
- HALF_OPEN: A single trial request tests whether it recovered

Transitions:
- CLOSED → OPEN: failure_threshold consecutive failures within failure_window
- OPEN → HALF_OPEN: After reset_timeout expires
- HALF_OPEN → CLOSED: On successful trial (failure count back to zero)
- HALF_OPEN → OPEN: On failed trial

A breaker can also be disabled for the rest of the process, which is how
rejected credentials are handled: such a provider is never called again.

State is plain counters and timestamps. All mutation happens on the asyncio
event loop thread, so no locking is needed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger

Clock = Callable[[], datetime]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3  # Failures before opening
    failure_window: timedelta = timedelta(seconds=60)  # Failures must fall within
    reset_timeout: timedelta = timedelta(seconds=30)  # Time before half-open
    half_open_max_requests: int = 1  # Trial requests allowed in half-open state


class CircuitBreaker:
    """
    Circuit breaker for a single provider.

    Usage:
        cb = CircuitBreaker("tiingo")

        if not cb.allow_request():
            skip provider

        try:
            result = await provider.fetch(key)
            cb.record_success()
        except Exception:
            cb.record_failure()
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._half_open_requests = 0
        self._trip_count = 0
        self._disabled_reason: str | None = None

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        if self._disabled_reason is not None:
            return CircuitState.OPEN

        if self._state == CircuitState.OPEN:
            if (
                self._opened_at
                and self._clock() >= self._opened_at + self.config.reset_timeout
            ):
                self._state = CircuitState.HALF_OPEN
                self._half_open_requests = 0
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def trip_count(self) -> int:
        return self._trip_count

    @property
    def is_disabled(self) -> bool:
        return self._disabled_reason is not None

    def can_request(self) -> bool:
        """Check if a request would be allowed, without reserving a trial slot."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.HALF_OPEN:
            return self._half_open_requests < self.config.half_open_max_requests

        return False

    def allow_request(self) -> bool:
        """Check if a request is allowed and reserve a trial slot in HALF_OPEN."""
        if not self.can_request():
            return False
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_requests += 1
        return True

    def release_request(self) -> None:
        """Give back a trial slot whose request never produced an outcome."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
            self._half_open_requests -= 1

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        now = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._failure_count += 1
            self._last_failure_time = now
            # Any failure in half-open reopens the circuit
            self._open()
            return

        if (
            self._last_failure_time is not None
            and now - self._last_failure_time > self.config.failure_window
        ):
            # Previous streak fell out of the window
            self._failure_count = 0

        self._failure_count += 1
        self._last_failure_time = now

        if (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def disable(self, reason: str) -> None:
        """Block the provider for the rest of the process."""
        if self._disabled_reason is None:
            self._disabled_reason = reason
            logger.error(
                f"Circuit breaker '{self.service_id}' DISABLED for process lifetime: {reason}"
            )

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_requests = 0
        self._trip_count += 1
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker, including a disabled one."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_requests = 0
        self._last_failure_time = None
        self._disabled_reason = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self.is_disabled or self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.reset_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "trip_count": self._trip_count,
            "disabled": self._disabled_reason,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "opened_at": (self._opened_at.isoformat() if self._opened_at else None),
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Registry for managing per-provider circuit breakers.

    Constructed explicitly and handed to the orchestrator; the clock is
    injectable so tests can move time deterministically.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("tiingo")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Clock = datetime.now,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a provider."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._default_config,
                clock=self._clock,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of providers with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]

    def disable(self, service_id: str, reason: str) -> None:
        """Permanently block a provider (e.g. rejected credentials)."""
        self.get(service_id).disable(reason)
