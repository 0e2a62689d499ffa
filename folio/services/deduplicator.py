"""
RequestDeduplicator - Prevents duplicate concurrent requests.

When multiple callers request the same resource simultaneously,
only one actual fetch is made and the result is shared.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    When multiple coroutines request the same key simultaneously,
    only one actual request is made. All callers await the same task.

    Usage:
        dedup = RequestDeduplicator()

        result, shared = await dedup.dedupe(
            key="quote:AAPL",
            request_fn=lambda: orchestrator_fetch("AAPL"),
        )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        self._waiters: dict[asyncio.Future[Any], int] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> tuple[T, bool]:
        """
        Execute request with deduplication.

        If a request with the same key is already in flight, wait for and
        return its result instead of starting a new one.

        Returns:
            (result, shared) where shared is True when the result came from
            a request started by another caller
        """
        # No await between lookup and insert, so the check-and-set is atomic
        # on the event loop
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.deduplicated += 1
            self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}")
            return await self._wait(key, task), True

        self._stats.total += 1
        self._log(f"NEW: Starting request: {key[:50]}")
        task = asyncio.ensure_future(request_fn())
        self._in_flight[key] = task
        task.add_done_callback(lambda _t: self._forget(key, _t))
        return await self._wait(key, task), False

    async def _wait(self, key: str, task: asyncio.Future[Any]) -> Any:
        """
        Await the shared task without letting one caller cancel it for others.

        Every caller (including the one that started it) waits through
        asyncio.shield. The task itself is cancelled only when its last
        waiter is cancelled.
        """
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._waiters[task] == 1 and not task.done():
                self._log(f"CANCEL: Last waiter gone: {key[:50]}")
                task.cancel()
            raise
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]

    def _forget(self, key: str, task: asyncio.Future[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
            self._log(f"DONE: Request completed: {key[:50]}")

    def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        if count:
            self._log(f"CANCEL_ALL: {count} requests cancelled")
        return count

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Total unique requests made
        self.deduplicated: int = 0  # Requests that were deduplicated
        self.in_flight: int = 0  # Current in-flight requests

    @property
    def dedup_rate(self) -> float:
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
