"""
wikimcp CLI - Main entry point.

Runs the MCP server on stdio or HTTP and offers direct page lookups
from the terminal.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.panel import Panel
from rich.traceback import install as install_rich_traceback

from wikimcp import __app_name__, __version__
from wikimcp.core.config import TransportType

from .common import configure_logging, console, err_console, load_config_or_exit

# Load environment variables from .env (if present)
load_dotenv()

install_rich_traceback(show_locals=False, width=120)

app = typer.Typer(
    name=__app_name__,
    help="Wikipedia lookups for MCP agent runtimes",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """wikimcp - Wikipedia search, extracts and HTML over MCP."""
    pass


# =============================================================================
# Import and register subcommand modules
# =============================================================================

from .commands import page  # noqa: E402

app.add_typer(page.app, name="page", help="Look up pages directly")


# =============================================================================
# Init Command
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
) -> None:
    """Write a default configs/app.yaml."""
    app_config_path = Path("configs/app.yaml")
    if app_config_path.exists() and not force:
        err_console.print(f"[yellow]{app_config_path} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)

    _create_default_app_config(app_config_path)
    console.print(Panel.fit(
        "[bold green]OK - configuration written[/bold green]\n\n"
        f"  - [cyan]{app_config_path}[/cyan]\n\n"
        "Next steps:\n"
        "  1. Try a lookup: [yellow]wikimcp page extract Paris[/yellow]\n"
        "  2. Serve over stdio: [yellow]wikimcp serve[/yellow]\n"
        "  3. Serve over HTTP: [yellow]wikimcp serve --transport http[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


def _create_default_app_config(path: Path) -> None:
    """Create default app.yaml configuration."""
    default_config = """\
# wikimcp Configuration

default_lang: en

# Upstream requests
fetch:
  timeout_seconds: 30
  retries: 3
  throttle_ms: 150
  initial_backoff_ms: 500
  backoff_multiplier: 2
  retry_transport_errors: true
  coalesce_requests: true

# Response cache (in memory, per process)
cache:
  max_entries: null
  extract_ttl_ms: 3600000
  html_ttl_ms: 600000
  search_ttl_ms: 30000

# MCP server
server:
  transport: stdio
  host: 127.0.0.1
  port: ${PORT:-3000}
  path: /mcp
  allowed_hosts: [127.0.0.1, localhost]
  allowed_origins: ["*"]
  dns_rebinding_protection: false

# Logging (console output always goes to stderr)
logging:
  level: INFO
  file: null
  json_format: true
  rich_console: true
"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config, encoding="utf-8")


# =============================================================================
# Serve Command
# =============================================================================


@app.command()
def serve(
    transport: Optional[TransportType] = typer.Option(
        None,
        "--transport",
        "-t",
        help="Transport to serve on (default from config: stdio)",
        case_sensitive=False,
    ),
    host: Optional[str] = typer.Option(None, "--host", help="HTTP bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="HTTP port"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to app.yaml"),
) -> None:
    """Run the MCP server."""
    from wikimcp.server import run_server

    config = load_config_or_exit(config_path)
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    configure_logging(config)

    run_server(config, transport=transport)


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
