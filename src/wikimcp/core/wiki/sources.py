"""
Wikipedia source resolvers.

Each lookup is an ordered fallback chain over the Action API and the
REST endpoints, served through a shared resilient fetcher.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx

from ..fetch import FetchError, FetchOptions, RateLimiter, ResilientFetcher, TTLCache
from .fallback import FallbackStep, resolve_first
from .urls import (
    DEFAULT_LANG,
    build_extract_url,
    build_parse_html_url,
    build_rest_html_url,
    build_rest_search_url,
    build_search_url,
    build_summary_url,
    lang_host,
)

if TYPE_CHECKING:
    from ..config.models import AppConfig

logger = logging.getLogger(__name__)


# Cache lifetimes per lookup kind
EXTRACT_TTL_MS = 60 * 60 * 1000
HTML_TTL_MS = 10 * 60 * 1000
SEARCH_TTL_MS = 30 * 1000


class NoHtmlError(FetchError):
    """Neither HTML source produced a page body."""

    def __init__(self, title: str, cause: Exception | None = None):
        message = f"No HTML returned by parse API for '{title}'"
        if cause is not None:
            message = f"{message}: {cause}"
        status_code = cause.status_code if isinstance(cause, FetchError) else None
        super().__init__(message, status_code=status_code, cause=cause)
        self.title = title


@dataclass
class SearchHit:
    """A single search result."""

    title: str
    pageid: int | None
    snippet: str
    wordcount: int | None = None
    size: int | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Response parsing
# =============================================================================


def _dig(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning None at the first missing key."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def parse_extract(data: Any) -> str | None:
    """Extract text of the first page in an Action API query result."""
    pages = _dig(data, "query", "pages")
    if not isinstance(pages, dict) or not pages:
        return None
    first = next(iter(pages.values()))
    extract = _dig(first, "extract")
    return extract if isinstance(extract, str) and extract else None


def parse_summary(data: Any) -> str | None:
    """Summary extract, falling back to the short description."""
    for field_name in ("extract", "description"):
        value = _dig(data, field_name)
        if isinstance(value, str) and value:
            return value
    return None


def parse_html(data: Any) -> str | None:
    html = _dig(data, "parse", "text", "*")
    return html if isinstance(html, str) else None


def parse_search(data: Any) -> list[SearchHit]:
    results = _dig(data, "query", "search") or []
    return [
        SearchHit(
            title=item.get("title", ""),
            pageid=item.get("pageid"),
            snippet=item.get("snippet", ""),
            wordcount=item.get("wordcount"),
            size=item.get("size"),
            timestamp=item.get("timestamp"),
        )
        for item in results
        if isinstance(item, dict)
    ]


def parse_rest_search(data: Any) -> list[SearchHit]:
    pages = _dig(data, "pages") or []
    return [
        SearchHit(
            title=item.get("title", ""),
            pageid=item.get("id"),
            snippet=item.get("excerpt", ""),
        )
        for item in pages
        if isinstance(item, dict)
    ]


# =============================================================================
# Service
# =============================================================================


class WikiService:
    """Wikipedia lookups over a shared fetcher.

    The fetcher (with its cache and rate limiter) is injected;
    from_config builds a fresh set per service.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        default_lang: str = DEFAULT_LANG,
        extract_ttl_ms: int = EXTRACT_TTL_MS,
        html_ttl_ms: int = HTML_TTL_MS,
        search_ttl_ms: int = SEARCH_TTL_MS,
        throttle_ms: int = 150,
        retries: int = 3,
    ):
        self.fetcher = fetcher
        self.default_lang = default_lang
        self.extract_ttl_ms = extract_ttl_ms
        self.html_ttl_ms = html_ttl_ms
        self.search_ttl_ms = search_ttl_ms
        self.throttle_ms = throttle_ms
        self.retries = retries

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "WikiService":
        """Build a service and its fetch layer from application config."""
        fetch = config.fetch
        cache = TTLCache(max_entries=config.cache.max_entries)
        limiter = RateLimiter(sleep=sleep)
        fetcher = ResilientFetcher(
            cache,
            limiter,
            client=client,
            user_agent=fetch.user_agent,
            timeout=fetch.timeout_seconds,
            throttle_key=fetch.throttle_key,
            initial_backoff_ms=fetch.initial_backoff_ms,
            backoff_multiplier=fetch.backoff_multiplier,
            max_retry_after=fetch.max_retry_after_seconds,
            retry_transport_errors=fetch.retry_transport_errors,
            coalesce=fetch.coalesce_requests,
            sleep=sleep,
        )
        return cls(
            fetcher,
            default_lang=config.default_lang,
            extract_ttl_ms=config.cache.extract_ttl_ms,
            html_ttl_ms=config.cache.html_ttl_ms,
            search_ttl_ms=config.cache.search_ttl_ms,
            throttle_ms=fetch.throttle_ms,
            retries=fetch.retries,
        )

    def _lang(self, lang: str | None) -> str:
        """Resolve and validate the language code."""
        code = (lang or self.default_lang).lower()
        lang_host(code)
        return code

    def _options(self, ttl_ms: int) -> FetchOptions:
        return FetchOptions(retries=self.retries, cache_ttl_ms=ttl_ms, throttle_ms=self.throttle_ms)

    async def search(self, query: str, limit: int = 5, lang: str | None = None) -> list[SearchHit]:
        """Full-text search, Action API first, REST search second.

        Returns an empty list when neither source finds anything.
        """
        lang = self._lang(lang)
        options = self._options(self.search_ttl_ms)

        async def action_search() -> list[SearchHit]:
            data = await self.fetcher.fetch_json(build_search_url(query, limit, lang), options)
            return parse_search(data)

        async def rest_search() -> list[SearchHit]:
            data = await self.fetcher.fetch_json(build_rest_search_url(query, limit, lang), options)
            return parse_rest_search(data)

        hits = await resolve_first([
            FallbackStep("action-search", action_search),
            FallbackStep("rest-search", rest_search),
        ])
        return hits or []

    async def get_extract(self, title: str, lang: str | None = None) -> str:
        """Plain-text lead section for a page.

        Never raises; an empty string means no source had content for
        the title, or the language code was invalid.
        """
        try:
            lang = self._lang(lang)
        except ValueError as e:
            logger.debug("No extract for %r: %s", title, e)
            return ""
        options = self._options(self.extract_ttl_ms)

        async def action_extract() -> str | None:
            data = await self.fetcher.fetch_json(build_extract_url(title, lang), options)
            return parse_extract(data)

        async def rest_summary() -> str | None:
            data = await self.fetcher.fetch_json(build_summary_url(title, lang), options)
            return parse_summary(data)

        extract = await resolve_first([
            FallbackStep("action-extract", action_extract),
            FallbackStep("rest-summary", rest_summary),
        ])
        return extract or ""

    async def get_html(self, title: str, lang: str | None = None) -> str:
        """Full rendered HTML for a page.

        Raises:
            NoHtmlError: If both the REST and the parse endpoints fail
        """
        lang = self._lang(lang)
        options = self._options(self.html_ttl_ms)

        async def rest_html() -> str | None:
            return await self.fetcher.fetch_text(build_rest_html_url(title, lang), options)

        async def parse_api_html() -> str:
            data = await self.fetcher.fetch_json(build_parse_html_url(title, lang), options)
            html = parse_html(data)
            if html is None:
                raise NoHtmlError(title)
            return html

        try:
            html = await resolve_first(
                [
                    FallbackStep("rest-html", rest_html),
                    FallbackStep("parse-html", parse_api_html, usable=lambda v: isinstance(v, str)),
                ],
                propagate_last=True,
            )
        except NoHtmlError:
            raise
        except FetchError as e:
            raise NoHtmlError(title, cause=e) from e

        if html is None:
            raise NoHtmlError(title)
        return html

    async def close(self) -> None:
        await self.fetcher.close()

    async def __aenter__(self) -> "WikiService":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
