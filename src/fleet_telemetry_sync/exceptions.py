# fleet_telemetry_sync/exceptions.py
"""
Exception hierarchy for the partner platform client.

Severity is decided by the call site, not by the exception type:

- AuthenticationError is fatal everywhere and aborts the whole sync run.
- NetworkError and GraphQLError abort company enumeration but only skip the
  affected driver during metric collection.
- A missing entity (unknown asset, empty lookup) is not an error at all; it
  resolves to None.

The retry layer in the client only ever retries TransientAPIError and its
subclasses.
"""

from typing import Any

__all__: list[str] = [
    'APIError',
    'AuthenticationError',
    'GraphQLError',
    'NetworkError',
    'RateLimitError',
    'SyncTimeoutError',
    'TransientAPIError',
]


class APIError(Exception):
    """
    Base exception for platform API errors.

    Attributes:
        status_code: HTTP status code if available, None for transport errors.
        response_body: Raw (truncated) response body for debugging.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code
        self.response_body: str | None = response_body


class TransientAPIError(APIError):
    """Raised for server-side failures (5xx) that are worth retrying."""

    pass


class RateLimitError(TransientAPIError):
    """
    Raised when the platform answers HTTP 429.

    Attributes:
        retry_after_seconds: Server-suggested delay before the next attempt.
    """

    def __init__(self, retry_after_seconds: float) -> None:
        super().__init__(
            f'Rate limit exceeded, retry after {retry_after_seconds}s',
            status_code=429,
        )
        self.retry_after_seconds: float = retry_after_seconds


class NetworkError(TransientAPIError):
    """Raised on transport failures: timeouts, refused or dropped connections."""

    pass


class GraphQLError(APIError):
    """
    Raised when a GraphQL response carries a non-empty ``errors`` array.

    The platform reports resolver failures with HTTP 200, so this is checked
    independently of the status code.

    Attributes:
        errors: The raw error objects returned by the server.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.errors: list[dict[str, Any]] = errors or []


class AuthenticationError(APIError):
    """Raised when the credential exchange fails. Always fatal for a run."""

    pass


class SyncTimeoutError(Exception):
    """Raised when a sync run exceeds its overall deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f'Sync run exceeded its deadline of {timeout_seconds:.0f}s')
        self.timeout_seconds: float = timeout_seconds
