"""
MCP server exposing Wikipedia lookups.

Tools and resources are thin wrappers around WikiService: they validate
arguments, call the service and format its result for the agent.
"""

from __future__ import annotations

from typing import Annotated, Optional
from urllib.parse import unquote

import orjson
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import Field

from wikimcp import __version__
from wikimcp.core.config import AppConfig, TransportType
from wikimcp.core.fetch import FetchError
from wikimcp.core.logging import get_contextual_logger
from wikimcp.core.wiki import LANG_PATTERN, WikiService

SERVER_NAME = "wikipedia"

# FastMCP transport names
_TRANSPORTS = {
    TransportType.STDIO: "stdio",
    TransportType.HTTP: "streamable-http",
}

LangCode = Annotated[str, Field(pattern=LANG_PATTERN)]

Lang = Annotated[
    Optional[LangCode],
    Field(description="Wiki language code, e.g. 'en', 'es', 'zh-yue'"),
]


def create_server(service: WikiService, config: AppConfig | None = None) -> FastMCP:
    """Build the MCP server around a service instance.

    Args:
        service: Wikipedia service shared by every tool call
        config: Application config (transport settings only)

    Returns:
        Configured FastMCP server, not yet running
    """
    config = config or AppConfig()
    srv = config.server

    mcp = FastMCP(
        SERVER_NAME,
        instructions=f"Wikipedia search, extracts and page HTML (wikimcp {__version__})",
        host=srv.host,
        port=srv.port,
        streamable_http_path=srv.path,
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=srv.dns_rebinding_protection,
            allowed_hosts=srv.allowed_hosts,
            allowed_origins=srv.allowed_origins,
        ),
    )

    log = get_contextual_logger("server")

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    @mcp.tool(name="search_wikipedia", description="Search Wikipedia articles by text query")
    async def search_wikipedia(
        query: Annotated[str, Field(min_length=1, description="Search text")],
        limit: Annotated[int, Field(ge=1, le=50, description="Maximum results")] = 5,
        lang: Lang = None,
    ) -> str:
        tool_log = log.with_context(tool="search_wikipedia")
        tool_log.info("query=%r limit=%d lang=%s", query, limit, lang or service.default_lang)

        hits = await service.search(query, limit=limit, lang=lang)
        tool_log.info("%d results", len(hits))
        return orjson.dumps([hit.to_dict() for hit in hits], option=orjson.OPT_INDENT_2).decode("utf-8")

    @mcp.tool(
        name="get_page_extract",
        description="Get the plain-text lead section (summary) for a page title",
    )
    async def get_page_extract(
        title: Annotated[str, Field(min_length=1, description="Page title")],
        lang: Lang = None,
    ) -> str:
        tool_log = log.with_context(tool="get_page_extract")
        tool_log.info("title=%r lang=%s", title, lang or service.default_lang)

        extract = await service.get_extract(title, lang)
        if not extract:
            tool_log.info("No extract found")
            raise ToolError(f"No extract found for '{title}'.")
        return extract

    @mcp.tool(
        name="get_page_html",
        description="Get full HTML for a page title (may be large)",
    )
    async def get_page_html(
        title: Annotated[str, Field(min_length=1, description="Page title")],
        lang: Lang = None,
    ) -> str:
        tool_log = log.with_context(tool="get_page_html")
        tool_log.info("title=%r lang=%s", title, lang or service.default_lang)

        try:
            html = await service.get_html(title, lang)
        except FetchError as e:
            tool_log.warning("%s", e)
            raise ToolError(str(e)) from e
        tool_log.info("%d characters of HTML", len(html))
        return html

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    @mcp.resource(
        "wiki://page/{title}",
        name="page",
        description="Plain-text extract for a Wikipedia page title",
        mime_type="text/plain",
    )
    async def page(title: str) -> str:
        title = unquote(title)
        return await service.get_extract(title) if title else ""

    @mcp.resource(
        "wiki://{lang}/page/{title}",
        name="page-by-lang",
        description="Plain-text extract for a Wikipedia page title on a given language wiki",
        mime_type="text/plain",
    )
    async def page_by_lang(lang: str, title: str) -> str:
        title = unquote(title)
        return await service.get_extract(title, lang) if title else ""

    return mcp


def run_server(config: AppConfig, transport: TransportType | None = None) -> None:
    """Create the service and serve it until the transport closes."""
    service = WikiService.from_config(config)
    mcp = create_server(service, config)
    transport = transport or config.server.transport

    log = get_contextual_logger("server")
    if transport is TransportType.HTTP:
        log.info("Serving MCP over HTTP on %s:%d%s", config.server.host, config.server.port, config.server.path)
    else:
        log.info("Serving MCP over stdio")

    mcp.run(transport=_TRANSPORTS[transport])
