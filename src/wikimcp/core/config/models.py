"""
Pydantic configuration models for wikimcp.

These models provide type-safe configuration with validation for:
- Upstream fetch behaviour (identification, retries, throttling)
- Response caching
- MCP server transport
- Logging
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from ..fetch.client import DEFAULT_THROTTLE_KEY, USER_AGENT
from ..wiki.urls import DEFAULT_LANG, lang_host


# =============================================================================
# Enums
# =============================================================================


class TransportType(str, Enum):
    """MCP transports the server can run on."""

    STDIO = "stdio"
    HTTP = "http"


# =============================================================================
# Fetch Configuration
# =============================================================================


class FetchConfig(BaseModel):
    """Upstream request, retry and politeness settings."""

    user_agent: str = Field(
        default=USER_AGENT,
        description="Client identification sent as User-Agent and Api-User-Agent",
    )
    timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Per-request timeout in seconds",
    )
    retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first failed attempt (429/5xx)",
    )
    throttle_ms: int = Field(
        default=150,
        ge=0,
        description="Minimum spacing between upstream requests",
    )
    throttle_key: str = Field(
        default=DEFAULT_THROTTLE_KEY,
        description="Rate limiter key shared by all upstream requests",
    )
    initial_backoff_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Backoff growth factor per retry",
    )
    max_retry_after_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Cap on honoured Retry-After values (unset honours the server)",
    )
    retry_transport_errors: bool = Field(
        default=True,
        description="Retry connection failures and timeouts like 5xx responses",
    )
    coalesce_requests: bool = Field(
        default=True,
        description="Share one upstream request between concurrent identical calls",
    )


# =============================================================================
# Cache Configuration
# =============================================================================


class CacheConfig(BaseModel):
    """Response cache settings."""

    max_entries: int | None = Field(
        default=None,
        ge=1,
        description="Evict least recently used entries beyond this count (unset = unbounded)",
    )
    extract_ttl_ms: int = Field(
        default=60 * 60 * 1000,
        ge=0,
        description="Lifetime of cached extracts and summaries",
    )
    html_ttl_ms: int = Field(
        default=10 * 60 * 1000,
        ge=0,
        description="Lifetime of cached page HTML",
    )
    search_ttl_ms: int = Field(
        default=30 * 1000,
        ge=0,
        description="Lifetime of cached search results",
    )


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """MCP server transport settings."""

    transport: TransportType = Field(
        default=TransportType.STDIO,
        description="Transport to serve on",
    )
    host: str = Field(
        default="127.0.0.1",
        description="Bind address for the HTTP transport",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port for the HTTP transport",
    )
    path: str = Field(
        default="/mcp",
        description="Endpoint path for the HTTP transport",
    )
    allowed_hosts: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "localhost"],
        description="Host headers accepted when rebinding protection is on",
    )
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins accepted when rebinding protection is on",
    )
    dns_rebinding_protection: bool = Field(
        default=False,
        description="Validate Host and Origin headers on HTTP requests",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            return f"/{v}"
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    default_lang: str = Field(
        default=DEFAULT_LANG,
        description="Wiki language used when a call does not name one",
    )

    # Components
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("default_lang")
    @classmethod
    def validate_lang(cls, v: str) -> str:
        lang_host(v)
        return v.lower()
