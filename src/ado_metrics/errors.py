"""Custom exception types for the ADO metrics core."""

from __future__ import annotations

from typing import Optional


class AdoMetricsError(Exception):
    """Base exception for all ADO metrics errors."""


class ConfigurationError(AdoMetricsError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(ConfigurationError):
    """Raised when Azure DevOps authentication credentials are unavailable."""


class HttpError(AdoMetricsError):
    """Raised when an Azure DevOps request fails.

    Carries the HTTP status (``0`` for transport failures), the request URL and
    method, the 1-based attempt that failed and an optional truncated response
    body.
    """

    def __init__(
        self,
        status: int,
        url: str,
        method: str,
        attempt: int = 1,
        body_snippet: Optional[str] = None,
    ) -> None:
        super().__init__(f"{method} {url} -> {status} (attempt {attempt})")
        self.status = status
        self.url = url
        self.method = method
        self.attempt = attempt
        self.body_snippet = body_snippet


class TransientRemoteError(HttpError):
    """Raised when 429/5xx responses persist after every retry."""


class AdoTimeoutError(HttpError):
    """Raised when a single attempt exceeds the request timeout."""

    def __init__(self, url: str, method: str, attempt: int = 1) -> None:
        super().__init__(status=408, url=url, method=method, attempt=attempt)


class RequestCancelledError(HttpError):
    """Raised when the caller cancels an operation before it completes."""

    def __init__(self, url: str, method: str, attempt: int = 1) -> None:
        super().__init__(status=499, url=url, method=method, attempt=attempt)


class ResponseValidationError(AdoMetricsError):
    """Raised when an API payload does not match its expected shape."""


class PagingSafetyError(AdoMetricsError):
    """Raised when a paginated endpoint exceeds the hard page ceiling."""
