"""Small helpers shared by controllers and the client."""

from __future__ import annotations

import inspect
import math
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from castlink.logging_abstraction import CastLogger


async def call_listeners(
    listeners: Iterable[Callable[..., Awaitable[None] | None]],
    *args: Any,
    logger: CastLogger,
    what: str,
) -> None:
    """Call sync or async listeners in order; a failing listener is logged and skipped."""
    for callback in list(listeners):
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(
                "%s listener failed",
                what,
                extra={"error": str(e), "error_type": type(e).__name__},
            )


def validate_level(level: float) -> float:
    """Return ``level`` as float if it is a volume level in [0, 1].

    Raises:
        ValueError: Not a number, NaN, or outside [0, 1]

    """
    if isinstance(level, bool) or not isinstance(level, int | float) or math.isnan(level):
        msg = f"Volume level must be a number in [0, 1], got {level!r}"
        raise ValueError(msg)
    if not 0.0 <= level <= 1.0:
        msg = f"Volume level must be in [0, 1], got {level}"
        raise ValueError(msg)
    return float(level)
