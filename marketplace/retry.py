"""Exponential backoff for downstream provider calls.

``retry_async`` wraps any fallible coroutine factory: first attempt plus
``max_retries`` retries, sleeping ``base_delay * multiplier**attempt``
between attempts. Logs each retry attempt. The last exception is re-raised
once the budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Indirection so tests can patch sleeping without touching the event loop
_sleep = asyncio.sleep


def compute_delay(
    attempt: int,
    base_delay: float,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.0,
) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
    delay = min(base_delay * (multiplier**attempt), max_delay)
    if jitter:
        jitter_amount = delay * jitter
        delay += random.uniform(-jitter_amount, jitter_amount)
    return max(0.0, delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 0.1,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "",
) -> T:
    """Await ``fn()`` until it succeeds or the retry budget is exhausted."""
    name = label or getattr(fn, "__name__", "operation")
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt == max_retries:
                logger.warning(
                    "Giving up on %s after %d attempts: %s", name, attempt + 1, e
                )
                raise
            delay = compute_delay(attempt, base_delay, multiplier, max_delay, jitter)
            logger.warning(
                "Retry %d/%d for %s (%s), waiting %.2fs",
                attempt + 1,
                max_retries,
                name,
                type(e).__name__,
                delay,
            )
            await _sleep(delay)
    raise AssertionError("unreachable")
