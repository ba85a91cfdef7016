"""Wikipedia URL builders and source resolvers."""

from .fallback import FallbackStep, resolve_first
from .sources import NoHtmlError, SearchHit, WikiService
from .urls import (
    DEFAULT_LANG,
    LANG_PATTERN,
    build_extract_url,
    build_parse_html_url,
    build_rest_html_url,
    build_rest_search_url,
    build_search_url,
    build_summary_url,
    lang_host,
)

__all__ = [
    "FallbackStep",
    "resolve_first",
    "NoHtmlError",
    "SearchHit",
    "WikiService",
    "DEFAULT_LANG",
    "LANG_PATTERN",
    "build_extract_url",
    "build_parse_html_url",
    "build_rest_html_url",
    "build_rest_search_url",
    "build_search_url",
    "build_summary_url",
    "lang_host",
]
