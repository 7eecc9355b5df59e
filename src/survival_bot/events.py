"""In-process fan-out of cycle updates to live subscribers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from survival_bot.utils.logging import get_logger

DEFAULT_CAPACITY = 100


class CycleUpdate(BaseModel):
    """Summary of one completed cycle, pushed to dashboards."""

    cycle_number: int
    balance: float
    action: str
    symbol: str | None = None
    confidence: int | None = None
    reasoning: str | None = None
    pnl: float = 0.0
    fear_greed: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Subscription:
    """One subscriber's bounded queue plus its lag counter."""

    def __init__(self, capacity: int) -> None:
        self._queue: asyncio.Queue[CycleUpdate] = asyncio.Queue(maxsize=capacity)
        self._lagged = 0

    async def next(self) -> CycleUpdate:
        return await self._queue.get()

    def take_lagged(self) -> int:
        """Return and reset the number of events dropped since the last call."""
        lagged, self._lagged = self._lagged, 0
        return lagged

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, update: CycleUpdate) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self._lagged += 1
        self._queue.put_nowait(update)


class CycleBroadcaster:
    """Single publisher, many subscribers. Publishing never waits."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._subscribers: set[Subscription] = set()
        self._logger = get_logger("survival_bot.events")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self._capacity)
        self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def publish(self, update: CycleUpdate) -> int:
        """Deliver to every subscriber; full queues drop their oldest event."""
        for subscription in tuple(self._subscribers):
            subscription._offer(update)
        delivered = len(self._subscribers)
        self._logger.debug(
            "cycle_update_published",
            cycle_number=update.cycle_number,
            subscribers=delivered,
        )
        return delivered
