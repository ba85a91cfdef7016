"""
Resilient HTTP fetching using httpx.

Provides async GET fetching with:
- TTL caching of decoded bodies
- Per-key throttling before every attempt, retries included
- Retry with exponential backoff that honours Retry-After
- Coalescing of concurrent identical requests
- Optional per-call deadline
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from functools import partial
from typing import Any, Awaitable, Callable

import httpx
import orjson

from .base import (
    FetchError,
    FetchOptions,
    FetchTimeoutError,
    TransientFetchError,
    is_retryable_status,
)
from .caching import TTLCache
from .retries import (
    DEFAULT_INITIAL_BACKOFF_MS,
    DEFAULT_MULTIPLIER,
    RetryConfig,
    build_retrying,
    parse_retry_after,
)
from .throttling import RateLimiter

logger = logging.getLogger(__name__)


USER_AGENT = "wikimcp/0.1 (+https://github.com/wikimcp/wikimcp; contact: GitHub Issues) httpx"

# Key shared by every upstream call so all operations pace together
DEFAULT_THROTTLE_KEY = "wmf"

TEXT_KEY_SUFFIX = "::text"

# Distinguishes a cached JSON null from a miss
_MISSING = object()

# Cache key, URL, retries, cache TTL, throttle
FlightKey = tuple[str, str, int, int, int]


def _decode_json(response: httpx.Response) -> Any:
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as e:
        raise FetchError(
            f"Invalid JSON from {response.url}: {e}",
            url=str(response.url),
            status_code=response.status_code,
            body=response.text[:500],
            cause=e,
        ) from e


def _decode_text(response: httpx.Response) -> str:
    return response.text


class ResilientFetcher:
    """Cached, throttled and retrying GET client.

    The cache and rate limiter are injected so that callers sharing them
    share state; nothing here is module-global.

    Usage:
        async with ResilientFetcher(TTLCache(), RateLimiter()) as fetcher:
            data = await fetcher.fetch_json(url, cache_ttl_ms=60_000)
    """

    def __init__(
        self,
        cache: TTLCache,
        limiter: RateLimiter,
        client: httpx.AsyncClient | None = None,
        user_agent: str = USER_AGENT,
        timeout: float = 30.0,
        throttle_key: str = DEFAULT_THROTTLE_KEY,
        initial_backoff_ms: float = DEFAULT_INITIAL_BACKOFF_MS,
        backoff_multiplier: float = DEFAULT_MULTIPLIER,
        max_retry_after: float | None = None,
        retry_transport_errors: bool = True,
        coalesce: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the fetcher.

        Args:
            cache: Shared response cache
            limiter: Shared rate limiter
            client: HTTP client to use (default: created lazily, owned here)
            user_agent: Identification sent as User-Agent and Api-User-Agent
            timeout: Per-request timeout in seconds
            throttle_key: Rate limiter key for every request
            initial_backoff_ms: Delay before the first retry
            backoff_multiplier: Backoff growth factor per retry
            max_retry_after: Cap in seconds on honoured Retry-After values
            retry_transport_errors: Retry connection failures and timeouts
            coalesce: Share one request between concurrent identical calls
            sleep: Coroutine used for retry backoff
        """
        self.cache = cache
        self.limiter = limiter
        self.timeout = timeout
        self.throttle_key = throttle_key
        self.initial_backoff_ms = initial_backoff_ms
        self.backoff_multiplier = backoff_multiplier
        self.max_retry_after = max_retry_after
        self.retry_transport_errors = retry_transport_errors
        self.coalesce = coalesce
        self._sleep = sleep

        self.headers = {
            "User-Agent": user_agent,
            "Api-User-Agent": user_agent,
            "Accept-Encoding": "gzip, br",
        }

        self._client = client
        self._owns_client = client is None
        self._inflight: dict[FlightKey, asyncio.Future[Any]] = {}

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=self.headers,
            )
            self._owns_client = True
        return self._client

    async def fetch_json(
        self,
        url: str,
        options: FetchOptions | None = None,
        **overrides: Any,
    ) -> Any:
        """GET a URL and decode the body as JSON.

        Args:
            url: Request URL
            options: Fetch options (default: FetchOptions())
            **overrides: Individual FetchOptions fields

        Returns:
            Decoded JSON value

        Raises:
            FetchError: On non-retryable status, exhausted retries,
                invalid JSON or an expired deadline
        """
        options = _resolve_options(options, overrides)
        return await self._fetch(url, options, _decode_json, options.key_for(url))

    async def fetch_text(
        self,
        url: str,
        options: FetchOptions | None = None,
        **overrides: Any,
    ) -> str:
        """GET a URL and return the body as text.

        Cached separately from fetch_json for the same URL.
        """
        options = _resolve_options(options, overrides)
        return await self._fetch(url, options, _decode_text, options.key_for(url, TEXT_KEY_SUFFIX))

    async def _fetch(
        self,
        url: str,
        options: FetchOptions,
        decode: Callable[[httpx.Response], Any],
        key: str,
    ) -> Any:
        if options.cache_ttl_ms > 0:
            cached = self.cache.get(key, _MISSING)
            if cached is not _MISSING:
                logger.debug("Cache hit for %s", key)
                return cached

        run = partial(self._fetch_with_retries, url, options, decode, key)

        if options.deadline_s is None:
            return await self._run_shared(_flight_key(url, options, key), run)

        # Deadline-bound calls own their request so a timeout cancels it
        try:
            return await asyncio.wait_for(run(), timeout=options.deadline_s)
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(
                f"Deadline of {options.deadline_s}s exceeded for {url}",
                url=url,
                cause=e,
            ) from e

    async def _run_shared(self, key: FlightKey, run: Callable[[], Awaitable[Any]]) -> Any:
        """Run the request, joining an identical one already in flight."""
        if not self.coalesce:
            return await run()

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(run())
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget, key))
        else:
            logger.debug("Joining in-flight request for %s", key[1])

        return await asyncio.shield(task)

    def _forget(self, key: FlightKey, task: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Waiters may all have been cancelled; mark the outcome retrieved
        if not task.cancelled():
            task.exception()

    async def _fetch_with_retries(
        self,
        url: str,
        options: FetchOptions,
        decode: Callable[[httpx.Response], Any],
        key: str,
    ) -> Any:
        config = RetryConfig(
            retries=options.retries,
            initial_backoff_ms=self.initial_backoff_ms,
            multiplier=self.backoff_multiplier,
            max_retry_after=self.max_retry_after,
        )

        try:
            async for attempt in build_retrying(config, sleep=self._sleep):
                with attempt:
                    data = await self._attempt(url, options.throttle_ms, decode)
                    if options.cache_ttl_ms > 0:
                        self.cache.set(key, data, options.cache_ttl_ms)
                    return data
        except TransientFetchError as e:
            raise e.exhausted() from e

    async def _attempt(
        self,
        url: str,
        throttle_ms: float,
        decode: Callable[[httpx.Response], Any],
    ) -> Any:
        """Perform a single throttled GET."""
        await self.limiter.wait(self.throttle_key, throttle_ms)
        client = await self._ensure_client()

        try:
            response = await client.get(url, headers=self.headers)
        except httpx.TransportError as e:
            error_cls = TransientFetchError if self.retry_transport_errors else FetchError
            raise error_cls(f"Transport error for {url}: {e}", url=url, cause=e) from e

        if response.is_success:
            return decode(response)

        status = response.status_code
        body = response.text
        if is_retryable_status(status):
            raise TransientFetchError(
                f"HTTP {status}: {body}",
                url=url,
                status_code=status,
                body=body,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
            )
        raise FetchError.from_status(url, status, body)

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ResilientFetcher":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _resolve_options(options: FetchOptions | None, overrides: dict[str, Any]) -> FetchOptions:
    if options is None:
        return FetchOptions(**overrides)
    if overrides:
        return replace(options, **overrides)
    return options


def _flight_key(url: str, options: FetchOptions, key: str) -> FlightKey:
    """Identity of a request for coalescing.

    Callers share a request only when it is the one each would have made
    alone: same URL, cache key and retry/cache/throttle options.
    """
    return (key, url, options.retries, options.cache_ttl_ms, options.throttle_ms)
