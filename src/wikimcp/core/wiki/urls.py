"""
Upstream URL builders.

Action API (``/w/api.php``), REST v1 (``/w/rest.php/v1``) and the
Wikimedia REST summary endpoint, parameterized by language subdomain.
"""

from __future__ import annotations

import re
from urllib.parse import quote, urlencode

DEFAULT_LANG = "en"

# Language codes like "en", "de" or "zh-yue"
LANG_PATTERN = r"^[a-zA-Z]{2,3}(-[a-zA-Z0-9]{2,8})?$"
_LANG_RE = re.compile(LANG_PATTERN)

SEARCH_MAX_LIMIT = 50
REST_SEARCH_MAX_LIMIT = 100

_ACTION_DEFAULTS = {"format": "json", "utf8": "1"}

# Back off while the servers are lagging
_MAXLAG = {"maxlag": "5"}


def lang_host(lang: str | None = None) -> str:
    """Hostname for a language wiki.

    Raises:
        ValueError: If lang is not a valid language code
    """
    code = (lang or DEFAULT_LANG).lower()
    if not _LANG_RE.match(code):
        raise ValueError(f"Invalid language code: {lang!r}")
    return f"{code}.wikipedia.org"


def encode_title(title: str) -> str:
    """Percent-encode a title for use as a single path segment."""
    return quote(title, safe="-_.!~*'()")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _action_url(lang: str | None, params: dict[str, str]) -> str:
    return f"https://{lang_host(lang)}/w/api.php?{urlencode(params)}"


def build_search_url(query: str, limit: int = 5, lang: str | None = None) -> str:
    """Action API full-text search."""
    return _action_url(lang, {
        "action": "query",
        **_ACTION_DEFAULTS,
        "list": "search",
        "srsearch": query,
        "srlimit": str(_clamp(limit, 1, SEARCH_MAX_LIMIT)),
        **_MAXLAG,
    })


def build_rest_search_url(query: str, limit: int = 5, lang: str | None = None) -> str:
    """REST v1 page search."""
    params = urlencode({"q": query, "limit": str(_clamp(limit, 1, REST_SEARCH_MAX_LIMIT))})
    return f"https://{lang_host(lang)}/w/rest.php/v1/search/page?{params}"


def build_extract_url(title: str, lang: str | None = None) -> str:
    """Action API intro-only plain-text extract."""
    return _action_url(lang, {
        "action": "query",
        **_ACTION_DEFAULTS,
        "prop": "extracts",
        "exintro": "1",
        "explaintext": "1",
        "titles": title,
        "redirects": "1",
        **_MAXLAG,
    })


def build_summary_url(title: str, lang: str | None = None) -> str:
    """Wikimedia REST page summary."""
    return f"https://{lang_host(lang)}/api/rest_v1/page/summary/{encode_title(title)}"


def build_parse_html_url(title: str, lang: str | None = None) -> str:
    """Action API rendered page HTML."""
    return _action_url(lang, {
        "action": "parse",
        **_ACTION_DEFAULTS,
        "page": title,
        "redirects": "1",
        **_MAXLAG,
    })


def build_rest_html_url(title: str, lang: str | None = None) -> str:
    """REST v1 page HTML."""
    return f"https://{lang_host(lang)}/w/rest.php/v1/page/{encode_title(title)}/html"
