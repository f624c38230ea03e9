"""Backoff utilities.

`exponential_backoff` yields the current delay so the caller can make one attempt
per iteration, then sleeps for the grown delay before the next one.
"""
import asyncio
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    delay = max(0.0, initial_delay)
    for attempt in range(1, max(1, max_attempts) + 1):
        yield delay
        if attempt < max_attempts:
            delay = min(delay * multiplier, max_delay)
            if delay > 0:
                await asyncio.sleep(delay)
