"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class RemoteError(ServiceError):
    """
    A failed remote call that the retry layer can classify.

    Attributes:
        status: HTTP status code, None when no response was received
        code: Domain error code (e.g. 'rate_limited') or network code (e.g. 'ECONNRESET')
        retry_after: Server-provided wait hint in seconds
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
        service_id: str | None = None,
    ):
        self.status = status
        self.code = code
        self.retry_after = retry_after
        super().__init__(message, service_id=service_id)


class NetworkError(RemoteError):
    """Connection-level failure, no response received."""

    def __init__(self, message: str, code: str = "ECONNRESET", service_id: str | None = None):
        super().__init__(message, status=None, code=code, service_id=service_id)


class RequestTimeoutError(NetworkError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            code="ETIMEDOUT",
            service_id=service_id,
        )


class RateLimitError(RemoteError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(
            msg,
            status=429,
            code="rate_limited",
            retry_after=retry_after,
            service_id=service_id,
        )


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )
