"""
ErrorClassifier - Maps raw provider exceptions onto a closed error taxonomy.

The classifier never raises: anything it does not recognise is reported as
INVALID_RESPONSE so the orchestrator can always record a typed FetchError.
"""

import asyncio
import json
import re
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from folio.services.errors import (
    AuthenticationError,
    InvalidResponseError,
    ProviderHTTPError,
    RateLimitError,
    RequestTimeoutError,
)


class ErrorKind(str, Enum):
    """Closed taxonomy of provider failures."""

    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    AUTH_ERROR = "AUTH_ERROR"


# Phrasing providers use for throttling, often inside 200 responses
RATE_LIMIT_PATTERN = re.compile(
    r"rate[\s_-]?limit|too many requests|api call frequency|"
    r"calls per (minute|day)|premium endpoint|quota exceeded|limit reached",
    re.IGNORECASE,
)

AUTH_PATTERN = re.compile(
    r"invalid api[\s_-]?key|api[\s_-]?key (is )?(missing|invalid|required)|"
    r"unauthori[sz]ed|forbidden|invalid token|access denied",
    re.IGNORECASE,
)

# Body fields that carry an error message instead of data
MESSAGE_FIELDS = ("Note", "Information", "Error Message", "error", "message", "detail")


def mentions_rate_limit(text: str | None) -> bool:
    return bool(text) and RATE_LIMIT_PATTERN.search(text) is not None


def mentions_bad_credentials(text: str | None) -> bool:
    return bool(text) and AUTH_PATTERN.search(text) is not None


def body_message(body: Any) -> str | None:
    """Pull an error-looking message out of a JSON body, if there is one."""
    if not isinstance(body, dict):
        return None
    for field in MESSAGE_FIELDS:
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def classify_status(status_code: int, body: str = "") -> ErrorKind:
    """Classify a non-2xx HTTP status, using the body to spot throttling."""
    if status_code == 429 or mentions_rate_limit(body):
        return ErrorKind.RATE_LIMIT
    if status_code in (401, 403):
        return ErrorKind.AUTH_ERROR
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    return ErrorKind.HTTP_ERROR


class ErrorClassifier:
    """
    Default classification strategy shared by all providers.

    Provider adapters override `classify_error` for body shapes specific to
    their API and fall back to this for everything else.
    """

    def classify(self, provider: str, raw: BaseException) -> ErrorKind:
        # Typed errors raised by our own adapters come first
        if isinstance(raw, RateLimitError):
            return ErrorKind.RATE_LIMIT
        if isinstance(raw, AuthenticationError):
            return ErrorKind.AUTH_ERROR
        if isinstance(raw, RequestTimeoutError):
            return ErrorKind.TIMEOUT
        if isinstance(raw, ProviderHTTPError):
            return classify_status(raw.status_code, raw.body)
        if isinstance(raw, InvalidResponseError):
            message = str(raw)
            if mentions_rate_limit(message):
                return ErrorKind.RATE_LIMIT
            if mentions_bad_credentials(message):
                return ErrorKind.AUTH_ERROR
            return ErrorKind.INVALID_RESPONSE

        # Raw transport errors
        if isinstance(raw, (asyncio.TimeoutError, httpx.TimeoutException)):
            return ErrorKind.TIMEOUT
        if isinstance(raw, httpx.HTTPStatusError):
            return classify_status(raw.response.status_code, raw.response.text)
        if isinstance(raw, (httpx.TransportError, ConnectionError)):
            return ErrorKind.NETWORK_ERROR

        # Parse failures and missing fields
        if isinstance(raw, (json.JSONDecodeError, ValidationError, KeyError, TypeError)):
            return ErrorKind.INVALID_RESPONSE

        message = str(raw)
        if mentions_rate_limit(message):
            return ErrorKind.RATE_LIMIT
        if mentions_bad_credentials(message):
            return ErrorKind.AUTH_ERROR
        if isinstance(raw, OSError):
            return ErrorKind.NETWORK_ERROR
        return ErrorKind.INVALID_RESPONSE


default_classifier = ErrorClassifier()


def classify(provider: str, raw: BaseException) -> ErrorKind:
    """Classify with the shared default strategy."""
    return default_classifier.classify(provider, raw)
