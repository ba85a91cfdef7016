"""
Page lookup commands.

Run the same lookups the MCP tools serve, straight from the terminal.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from wikimcp.core.config import AppConfig
from wikimcp.core.fetch import FetchError
from wikimcp.core.wiki import WikiService, lang_host

from ..common import configure_logging, console, err_console, load_config_or_exit

app = typer.Typer(
    name="page",
    help="Look up pages directly",
    no_args_is_help=True,
)

LangOption = typer.Option(None, "--lang", "-l", help="Wiki language code (default from config)")
ConfigOption = typer.Option(None, "--config", "-c", help="Path to app.yaml")
VerboseOption = typer.Option(False, "--verbose", help="Log fetch activity")


def _prepare(config_path: Optional[Path], verbose: bool) -> AppConfig:
    config = load_config_or_exit(config_path)
    configure_logging(config, level="DEBUG" if verbose else "WARNING")
    return config


def _check_lang(config: AppConfig, lang: Optional[str]) -> None:
    try:
        lang_host(lang or config.default_lang)
    except ValueError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search text"),
    limit: int = typer.Option(5, "--limit", "-n", min=1, max=50, help="Maximum results"),
    lang: Optional[str] = LangOption,
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Search articles by text query."""
    config = _prepare(config_path, verbose)
    _check_lang(config, lang)

    async def _run():
        async with WikiService.from_config(config) as service:
            return await service.search(query, limit=limit, lang=lang)

    hits = asyncio.run(_run())
    if not hits:
        console.print(f"[dim]No results for '{escape(query)}'.[/dim]")
        raise typer.Exit(1)

    table = Table(title=f"Search: {escape(query)}", show_header=True, header_style="bold magenta")
    table.add_column("Title", style="cyan")
    table.add_column("Page ID", justify="right")
    table.add_column("Words", justify="right")
    table.add_column("Snippet")

    for hit in hits:
        table.add_row(
            escape(hit.title),
            str(hit.pageid) if hit.pageid is not None else "-",
            str(hit.wordcount) if hit.wordcount is not None else "-",
            escape(_strip_markup(hit.snippet)),
        )

    console.print(table)


@app.command()
def extract(
    title: str = typer.Argument(..., help="Page title"),
    lang: Optional[str] = LangOption,
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Print the plain-text lead section of a page."""
    config = _prepare(config_path, verbose)
    _check_lang(config, lang)

    async def _run():
        async with WikiService.from_config(config) as service:
            return await service.get_extract(title, lang)

    text = asyncio.run(_run())
    if not text:
        err_console.print(f"[yellow]No extract found for '{escape(title)}'.[/yellow]")
        raise typer.Exit(1)

    console.print(Panel(escape(text), title=f"[bold]{escape(title)}[/bold]", border_style="cyan"))


@app.command()
def html(
    title: str = typer.Argument(..., help="Page title"),
    lang: Optional[str] = LangOption,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write HTML to this file"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Fetch the full rendered HTML of a page."""
    config = _prepare(config_path, verbose)
    _check_lang(config, lang)

    async def _run():
        async with WikiService.from_config(config) as service:
            return await service.get_html(title, lang)

    try:
        page_html = asyncio.run(_run())
    except FetchError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(page_html, encoding="utf-8")
        console.print(f"[green]Wrote {len(page_html):,} characters to[/green] [cyan]{output}[/cyan]")
    else:
        console.out(page_html, highlight=False)


def _strip_markup(snippet: str) -> str:
    """Drop the <span class="searchmatch"> highlighting from snippets."""
    return re.sub(r"<[^>]+>", "", snippet or "")
