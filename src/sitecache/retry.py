"""Bounded retry with exponential backoff.

Usage::

    text = await with_retries(
        lambda: fetch_page(url),
        attempts=3,
        backoff=exponential_backoff(1.0),
    )

Only recoverable ``SiteCacheError`` instances are retried by default; anything
else propagates on the first failure. After the last attempt the final
exception is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from sitecache.errors import SiteCacheError

log = structlog.get_logger()

T = TypeVar("T")

BackoffFn = Callable[[int], float]


def exponential_backoff(base_seconds: float, *, max_seconds: float = 60.0) -> BackoffFn:
    """Delay before retry *n* (0-indexed): ``base * 2**n``, capped at *max_seconds*."""
    if base_seconds < 0:
        raise ValueError("base_seconds must be non-negative")

    def _delay(retry_number: int) -> float:
        return min(base_seconds * (2**retry_number), max_seconds)

    return _delay


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, SiteCacheError) and exc.recoverable


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff: BackoffFn,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Run *operation* up to *attempts* times, sleeping ``backoff(n)`` between tries."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if attempt == attempts - 1 or not should_retry(exc):
                raise
            delay = backoff(attempt)
            log.info("retry_scheduled", attempt=attempt + 1, delay=delay, error=str(exc))
            await (sleep or asyncio.sleep)(delay)

    raise AssertionError("unreachable")  # pragma: no cover
