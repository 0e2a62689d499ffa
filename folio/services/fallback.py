"""
Ordered provider substitution.

Each candidate is attempted once, in order, until one succeeds. A failed
candidate is never retried against itself; the next one takes its place.

Usage:
    provider, quote = await with_fallback(
        providers, lambda p: p.fetch("AAPL")
    )
"""

from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from loguru import logger

from folio.services.errors import FallbackExhaustedError

P = TypeVar("P")
T = TypeVar("T")


def _name(candidate) -> str:
    if isinstance(candidate, tuple) and candidate:
        candidate = candidate[0]
    return getattr(candidate, "name", None) or repr(candidate)


async def with_fallback(
    candidates: Iterable[P],
    attempt: Callable[[P], Awaitable[T]],
    on_error: Callable[[P, Exception], None] | None = None,
) -> tuple[P, T]:
    """
    Return (candidate, result) for the first candidate whose attempt succeeds.

    `candidates` is consumed lazily, so a generator can decide eligibility
    (e.g. circuit state) at the moment each candidate comes up.

    Raises:
        FallbackExhaustedError: every candidate failed; carries each error
    """
    errors: list[tuple[str, BaseException]] = []

    for candidate in candidates:
        try:
            return candidate, await attempt(candidate)
        except Exception as e:
            logger.debug(f"Fallback candidate {_name(candidate)} failed: {e}")
            errors.append((_name(candidate), e))
            if on_error is not None:
                on_error(candidate, e)

    raise FallbackExhaustedError(errors)
