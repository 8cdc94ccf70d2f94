"""Correlation IDs shared by every log line of one panel session.

A new id is minted for each connection attempt so that the handshake, the
discovery sweep and the realtime traffic of a socket can be grepped together.
Stored in a contextvar, so tasks spawned inside a context inherit it.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "lares_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a fresh id (uuid4 hex, no dashes)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """Scope a correlation id, restoring the previous one on exit.

    Example:
        with correlation_context() as session_id:
            logger.info("Opening panel socket")  # tagged with session_id

    """
    previous_id = get_correlation_id()
    active_id = correlation_id or generate_correlation_id()
    set_correlation_id(active_id)
    try:
        yield active_id
    finally:
        set_correlation_id(previous_id)


def ensure_correlation_id() -> str:
    """Return the current id, minting one first if the context has none."""
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id
