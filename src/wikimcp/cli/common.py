"""Helpers shared by CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from wikimcp.core.config import AppConfig, ConfigError, load_app_config
from wikimcp.core.logging import setup_logging

console = Console()
err_console = Console(stderr=True)


def load_config_or_exit(path: Optional[Path]) -> AppConfig:
    """Load configuration, printing the problem and exiting on error."""
    try:
        return load_app_config(path)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        if e.details:
            err_console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1)


def configure_logging(config: AppConfig, level: str | None = None) -> None:
    setup_logging(
        level=level or config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        rich_console=config.logging.rich_console,
    )
