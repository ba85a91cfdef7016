"""Fetch utilities - caching, throttling, retries."""

from .base import (
    FetchError,
    FetchOptions,
    FetchTimeoutError,
    TransientFetchError,
)
from .caching import TTLCache
from .client import ResilientFetcher, USER_AGENT
from .retries import RetryConfig, parse_retry_after
from .throttling import RateLimiter

__all__ = [
    "FetchError",
    "FetchOptions",
    "FetchTimeoutError",
    "TransientFetchError",
    "TTLCache",
    "RateLimiter",
    "RetryConfig",
    "ResilientFetcher",
    "USER_AGENT",
    "parse_retry_after",
]
