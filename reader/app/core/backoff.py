"""Backoff utilities.

`exponential_backoff` yields `(attempt, delay)` so the caller can make one attempt
per iteration; between attempts it sleeps for the grown delay. Breaking out of the
loop stops the schedule, exhausting it means every attempt was used.
"""
import asyncio
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[tuple[int, float]]:
    delay = max(0.0, initial_delay)
    for attempt in range(1, max(1, max_attempts) + 1):
        yield attempt, delay
        if attempt < max_attempts:
            delay = min(delay * multiplier, max_delay)
            if delay > 0:
                await asyncio.sleep(delay)
