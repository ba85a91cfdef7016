"""CLI command modules."""

from . import page

__all__ = [
    "page",
]
