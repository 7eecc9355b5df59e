"""Fixed-rate cycle scheduler."""

from __future__ import annotations

import asyncio
from time import monotonic
from typing import Protocol

from survival_bot.types import CycleResult
from survival_bot.utils.logging import get_logger


class CycleRunner(Protocol):
    async def run_cycle(self) -> CycleResult: ...


class CycleScheduler:
    """Runs a cycle immediately, then once per interval.

    A cycle always finishes before the next tick is considered; ticks missed
    while a slow cycle ran are skipped rather than queued.
    """

    def __init__(self, engine: CycleRunner, interval_sec: float) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self._engine = engine
        self._interval_sec = interval_sec
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._logger = get_logger("survival_bot.scheduler")
        self.cycles_run = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_forever(self, max_cycles: int | None = None) -> None:
        self._stopping.clear()
        self._logger.info("scheduler_started", interval_sec=self._interval_sec)
        next_tick = monotonic()
        while not self._stopping.is_set():
            await self._tick()
            if max_cycles is not None and self.cycles_run >= max_cycles:
                break

            next_tick += self._interval_sec
            now = monotonic()
            while next_tick <= now:
                next_tick += self._interval_sec
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                continue
        self._logger.info("scheduler_stopped", cycles_run=self.cycles_run)

    def start(self) -> asyncio.Task[None]:
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self.run_forever(), name="cycle-scheduler")
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _tick(self) -> None:
        try:
            result = await self._engine.run_cycle()
        except Exception as exc:  # noqa: BLE001 - a failed cycle must not stop the loop.
            self._logger.exception("cycle_failed", error=str(exc))
        else:
            self._logger.info(
                "scheduled_cycle_done",
                status=result.status,
                cycle_number=result.cycle_number,
            )
        finally:
            self.cycles_run += 1
