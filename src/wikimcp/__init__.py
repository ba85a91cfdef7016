"""
wikimcp - Wikipedia lookups for MCP agent runtimes.

Exposes search, lead-section extracts and full page HTML as MCP tools,
backed by a cached, throttled and retrying fetch layer.
"""

__version__ = "0.1.0"
__app_name__ = "wikimcp"
