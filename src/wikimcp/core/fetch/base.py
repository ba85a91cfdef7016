"""
Fetch data structures and errors.

Defines the per-call options understood by the resilient fetcher and
the error hierarchy it raises.
"""

from __future__ import annotations

from dataclasses import dataclass


# Default per-call settings
DEFAULT_RETRIES = 3
DEFAULT_THROTTLE_MS = 150

# Status codes that should trigger retry (plus any 5xx)
RETRY_STATUS_CODES = {429}


def is_retryable_status(status_code: int) -> bool:
    """Check whether an HTTP status is a transient upstream failure."""
    return status_code in RETRY_STATUS_CODES or status_code >= 500


@dataclass
class FetchOptions:
    """Options for a single resilient fetch."""

    retries: int = DEFAULT_RETRIES  # Retries after the first failure
    cache_ttl_ms: int = 0  # 0 disables caching for this call
    cache_key: str | None = None  # Defaults to the request URL
    throttle_ms: int = DEFAULT_THROTTLE_MS

    # Overall deadline in seconds for the call, retries included
    deadline_s: float | None = None

    def key_for(self, url: str, suffix: str = "") -> str:
        """Resolve the cache key for a URL."""
        return (self.cache_key or url) + suffix


class FetchError(Exception):
    """Unrecoverable fetch failure.

    Raised for non-retryable statuses, exhausted retries and transport
    failures. ``status_code`` is None when no response was received.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.body = body
        self.cause = cause

    @classmethod
    def from_status(cls, url: str, status_code: int, body: str, **kwargs) -> "FetchError":
        return cls(f"HTTP {status_code}: {body}", url=url, status_code=status_code, body=body, **kwargs)


class TransientFetchError(FetchError):
    """Upstream returned 429 or 5xx; eligible for retry."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
        cause: Exception | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, url=url, status_code=status_code, body=body, cause=cause)
        self.retry_after = retry_after

    def exhausted(self) -> FetchError:
        """Plain FetchError for this failure once no retries remain."""
        return FetchError(str(self), url=self.url, status_code=self.status_code, body=self.body, cause=self)


class FetchTimeoutError(FetchError):
    """The call did not finish before its deadline."""
    pass
