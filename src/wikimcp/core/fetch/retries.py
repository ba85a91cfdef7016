"""
Retry utilities with tenacity.

Builds the retry policy used by the resilient fetcher: exponential
backoff that yields to a server-provided Retry-After delay.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .base import DEFAULT_RETRIES, TransientFetchError

logger = logging.getLogger(__name__)


# Default retry configuration
DEFAULT_INITIAL_BACKOFF_MS = 500
DEFAULT_MULTIPLIER = 2


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        initial_backoff_ms: float = DEFAULT_INITIAL_BACKOFF_MS,
        multiplier: float = DEFAULT_MULTIPLIER,
        max_retry_after: float | None = None,
    ):
        """Initialize retry configuration.

        Args:
            retries: Retries allowed after the first failed attempt
            initial_backoff_ms: Delay before the first retry
            multiplier: Backoff growth factor per retry
            max_retry_after: Cap in seconds on honoured Retry-After values
                (None honours the server exactly)
        """
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.retries = retries
        self.initial_backoff_ms = initial_backoff_ms
        self.multiplier = multiplier
        self.max_retry_after = max_retry_after


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP-date. Returns None when the header
    is missing or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if math.isnan(seconds) or math.isinf(seconds):
            return None
        return max(0.0, seconds)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class wait_retry_after(wait_base):
    """Wait for the server's Retry-After when given, else the fallback.

    The fallback is computed from the attempt number, so a Retry-After
    value never resets the escalation of later backoff delays.
    """

    def __init__(self, fallback: wait_base, max_retry_after: float | None = None):
        self.fallback = fallback
        self.max_retry_after = max_retry_after

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            if self.max_retry_after is not None:
                return min(retry_after, self.max_retry_after)
            return retry_after
        return self.fallback(retry_state)


def backoff_wait(config: RetryConfig) -> wait_base:
    """Exponential backoff: initial, initial*m, initial*m^2, ... seconds."""
    return wait_retry_after(
        wait_exponential(
            multiplier=config.initial_backoff_ms / 1000.0,
            exp_base=config.multiplier,
            min=0,
        ),
        max_retry_after=config.max_retry_after,
    )


def build_retrying(
    config: RetryConfig,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> AsyncRetrying:
    """Build the async retry controller for one fetch call.

    Only TransientFetchError is retried; anything else propagates on
    the first occurrence. Exhausted retries re-raise the last error,
    which the fetcher escalates to a plain FetchError.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(config.retries + 1),
        wait=backoff_wait(config),
        retry=retry_if_exception_type(TransientFetchError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
