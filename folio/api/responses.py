"""
Translate FetchResults into HTTP responses.

Upstream error text never reaches clients: failures are reported as
provider name plus ErrorKind only.
"""

from typing import Any, NoReturn

from fastapi import status
from fastapi.encoders import jsonable_encoder

from folio.exceptions import RateLimitedError, UpstreamUnavailableError
from folio.services.orchestrator import FetchResult


def status_for_result(result: FetchResult[Any]) -> int:
    """200 when any data (fresh, cached or stale), else 429 or 503."""
    if result.data is not None:
        return status.HTTP_200_OK
    if result.rate_limited:
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_503_SERVICE_UNAVAILABLE


def sanitized_errors(result: FetchResult[Any]) -> list[dict[str, str]]:
    return [{"provider": e.provider, "code": e.code.value} for e in result.errors]


def result_body(result: FetchResult[Any]) -> dict[str, Any]:
    return {
        "data": jsonable_encoder(result.data),
        "source": result.source,
        "cached": result.cached,
        "age": result.age,
        "timestamp": result.timestamp.isoformat(),
        "errors": sanitized_errors(result),
        "metadata": result.metadata.to_dict(),
    }


def _raise_unavailable(rate_limited: bool, errors: Any) -> NoReturn:
    if rate_limited:
        raise RateLimitedError(
            {"message": "Upstream rate limit reached, try again later", "errors": errors}
        )
    raise UpstreamUnavailableError({"message": "Data temporarily unavailable", "errors": errors})


def render(result: FetchResult[Any]) -> dict[str, Any]:
    """
    Body for a successful result.

    Raises:
        RateLimitedError: no data and a provider reported RATE_LIMIT
        UpstreamUnavailableError: no data otherwise
    """
    if status_for_result(result) == status.HTTP_200_OK:
        return result_body(result)
    _raise_unavailable(result.rate_limited, sanitized_errors(result))


def render_many(results: dict[str, FetchResult[Any]]) -> dict[str, Any]:
    """
    Body for a multi-key request: one result body per key that has data and
    the sanitized failures of the keys that don't.

    Raises like render() only when no key has data.
    """
    data = {key: result_body(r) for key, r in results.items() if r.ok}
    failed = {key: sanitized_errors(r) for key, r in results.items() if not r.ok}
    if not data:
        _raise_unavailable(any(r.rate_limited for r in results.values()), failed)

    return {
        "data": data,
        "errors": failed,
        "summary": {"total": len(results), "successful": len(data), "failed": len(failed)},
    }
