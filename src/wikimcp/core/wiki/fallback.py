"""
Ordered fallback over alternative upstream sources.

A chain is a list of steps tried in order. The first step producing a
usable result wins; a step that raises or yields an unusable result
hands over to the next one. Only the last step may propagate its error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_non_empty(value: Any) -> bool:
    """Default usability check: any truthy value."""
    return bool(value)


@dataclass
class FallbackStep(Generic[T]):
    """One source in a fallback chain."""

    name: str
    run: Callable[[], Awaitable[T | None]]
    usable: Callable[[Any], bool] = is_non_empty


async def resolve_first(
    steps: Sequence[FallbackStep[T]],
    propagate_last: bool = False,
) -> T | None:
    """Return the first usable result from an ordered list of steps.

    Args:
        steps: Sources in order of preference
        propagate_last: Re-raise an error from the final step instead
            of swallowing it

    Returns:
        The first usable result, or None when no step produced one
    """
    for index, step in enumerate(steps):
        is_last = index == len(steps) - 1
        try:
            result = await step.run()
        except Exception as e:
            if is_last and propagate_last:
                raise
            logger.debug("Source %s failed, trying next: %s", step.name, e)
            continue

        if step.usable(result):
            return result
        logger.debug("Source %s returned nothing usable", step.name)

    return None
