"""Bounded polling helper."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[object]]


async def poll_until(
    probe: Callable[[int], Awaitable[T | None]],
    *,
    interval_sec: float,
    max_attempts: int,
    sleep: Sleeper = asyncio.sleep,
) -> T | None:
    """Call ``probe(attempt)`` after each interval until it returns a value.

    Returns None once ``max_attempts`` probes came back empty. The probe is
    responsible for absorbing its own transient failures.
    """
    if max_attempts <= 0:
        return None
    for attempt in range(1, max_attempts + 1):
        await sleep(interval_sec)
        result = await probe(attempt)
        if result is not None:
            return result
    return None
