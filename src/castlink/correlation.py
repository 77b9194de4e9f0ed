"""Correlation ids for tracing one request through send, reply and timeout.

The id lives in a contextvar, so tasks spawned while a request is being made
inherit it and every log line about that request carries the same value.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_current: contextvars.ContextVar[str | None] = contextvars.ContextVar("castlink_correlation_id", default=None)


def generate_correlation_id() -> str:
    """Return a fresh id: 32 lowercase hex characters."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _current.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Replace the id for the current context; None clears it."""
    _ = _current.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """Scope a correlation id to a block, restoring the outer one afterwards.

    Args:
        correlation_id: Id to use; a new one is generated when None and
            ``auto_generate`` is set
        auto_generate: Whether to generate an id when none is given

    Example:
        with correlation_context() as corr_id:
            reply = await correlator.request(...)

    """
    if correlation_id is None and auto_generate:
        correlation_id = generate_correlation_id()
    token = _current.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _current.reset(token)
