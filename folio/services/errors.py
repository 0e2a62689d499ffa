"""
Service layer exceptions.

Provider adapters raise these; the error classifier maps them (together with
raw httpx / asyncio errors) onto the closed ErrorKind taxonomy.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class BudgetExhaustedError(RequestTimeoutError):
    """The caller's overall budget ran out before the provider was called."""

    def __init__(self, service_id: str):
        self.timeout = 0.0
        ServiceError.__init__(
            self,
            f"Request budget exhausted before service '{service_id}' was called",
            service_id=service_id,
        )


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(
        self,
        service_id: str,
        retry_after: float | None = None,
        detail: str | None = None,
    ):
        self.retry_after = retry_after
        self.detail = detail
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        if detail:
            msg += f": {detail}"
        super().__init__(msg, service_id=service_id)


class AuthenticationError(ServiceError):
    """Credentials are missing or rejected by the provider."""

    pass


class InvalidResponseError(ServiceError):
    """Response body could not be parsed or lacks required fields."""

    def __init__(self, message: str, service_id: str | None = None, body=None):
        # Decoded body, kept so provider-specific classifiers can inspect it
        self.body = body
        super().__init__(message, service_id=service_id)


class ProviderHTTPError(ServiceError):
    """Provider answered with a non-2xx status."""

    def __init__(self, service_id: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"HTTP {status_code} from service '{service_id}': {body[:200]}",
            service_id=service_id,
        )


class FallbackExhaustedError(ServiceError):
    """Every provider in a fallback chain failed."""

    def __init__(self, errors: list[tuple[str, BaseException]]):
        self.errors = errors
        names = ", ".join(name for name, _ in errors) or "none"
        super().__init__(f"All providers failed: {names}")
