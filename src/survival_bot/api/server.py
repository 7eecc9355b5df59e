"""HTTP status/control API with a WebSocket push channel."""

from __future__ import annotations

import asyncio
import hmac
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from survival_bot import __version__
from survival_bot.config import DEFAULT_KILL_SECRET, Settings
from survival_bot.errors import PersistenceError
from survival_bot.events import CycleBroadcaster
from survival_bot.journal.models import as_utc
from survival_bot.journal.store import TradingStore
from survival_bot.pipeline import CycleEngine
from survival_bot.scheduler import CycleScheduler
from survival_bot.utils.logging import get_logger

MANUAL_KILL_REASON = "manual kill switch activated"


class KillRequest(BaseModel):
    reason: str | None = None


def create_app(
    settings: Settings,
    store: TradingStore,
    engine: CycleEngine,
    broadcaster: CycleBroadcaster,
    scheduler: CycleScheduler | None = None,
) -> FastAPI:
    """Build the API around an already-initialised store and engine."""
    logger = get_logger("survival_bot.api.server")
    trigger_tasks: set[asyncio.Task[None]] = set()

    if settings.kill_secret == DEFAULT_KILL_SECRET:
        logger.warning("kill_secret_is_default", hint="set KILL_SECRET in .env")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            for task in list(trigger_tasks):
                task.cancel()
            if trigger_tasks:
                await asyncio.gather(*trigger_tasks, return_exceptions=True)

    app = FastAPI(title="Survival Trading Bot API", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("api_persistence_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"status": "error", "detail": str(exc), "path": request.url.path},
        )

    def _check_secret(secret: str | None) -> None:
        if not secret or not hmac.compare_digest(secret, settings.kill_secret):
            logger.warning("kill_secret_rejected")
            raise HTTPException(status_code=401, detail="invalid kill secret")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }

    @app.get("/status")
    async def status() -> dict[str, Any]:
        lifecycle = await store.get_lifecycle()
        snapshots = await store.list_balance_snapshots(limit=1)
        last_cycles = await store.list_cycle_logs(limit=1)
        started_at = as_utc(lifecycle.started_at) or datetime.now(timezone.utc)
        uptime_hours = (datetime.now(timezone.utc) - started_at).total_seconds() / 3600.0
        last_cycle_at = as_utc(last_cycles[0].created_at) if last_cycles else None
        return {
            "is_alive": not lifecycle.is_dead,
            "death_reason": lifecycle.death_reason,
            "balance_usdc": snapshots[0].balance if snapshots else 0.0,
            "total_pnl": await store.total_realized_pnl(),
            "open_positions": await store.count_open_positions(),
            "total_trades": await store.count_trades(),
            "total_cycles": await store.count_cycles(),
            "win_rate": await store.win_rate(),
            "uptime_hours": round(uptime_hours, 2),
            "last_cycle_at": last_cycle_at.isoformat() if last_cycle_at else None,
            "cycle_running": engine.is_running,
        }

    @app.get("/trades")
    async def trades() -> list[dict[str, Any]]:
        return [t.to_dict() for t in await store.list_trades(limit=50)]

    @app.get("/balance")
    async def balance_history() -> list[dict[str, Any]]:
        return [s.to_dict() for s in await store.list_balance_snapshots(limit=100)]

    @app.get("/cycles")
    async def cycles() -> list[dict[str, Any]]:
        return [c.to_dict() for c in await store.list_cycle_logs(limit=50)]

    @app.get("/positions")
    async def positions() -> list[dict[str, Any]]:
        return [p.to_dict() for p in await store.list_open_positions()]

    @app.post("/trigger", status_code=202)
    async def trigger() -> dict[str, str]:
        logger.info("manual_cycle_triggered")
        task = asyncio.create_task(_run_manual_cycle(), name="manual-cycle")
        trigger_tasks.add(task)
        task.add_done_callback(trigger_tasks.discard)
        return {"status": "accepted", "detail": "cycle triggered"}

    async def _run_manual_cycle() -> None:
        try:
            result = await engine.run_cycle()
        except Exception as exc:  # noqa: BLE001 - background task, nothing to propagate to.
            logger.exception("manual_cycle_failed", error=str(exc))
            return
        logger.info("manual_cycle_done", status=result.status, cycle_number=result.cycle_number)

    @app.post("/kill")
    async def kill(
        body: KillRequest | None = None,
        x_kill_secret: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _check_secret(x_kill_secret)
        reason = (body.reason if body and body.reason else None) or MANUAL_KILL_REASON
        lifecycle = await engine.kill_bot(reason)
        return {"status": "killed", **lifecycle.to_dict()}

    @app.post("/revive")
    async def revive(x_kill_secret: str | None = Header(default=None)) -> dict[str, Any]:
        _check_secret(x_kill_secret)
        lifecycle = await engine.revive_bot()
        return {"status": "alive", **lifecycle.to_dict()}

    @app.websocket("/ws")
    async def cycle_updates(websocket: WebSocket) -> None:
        subscription = broadcaster.subscribe()
        await websocket.accept()
        logger.info("websocket_connected", subscribers=broadcaster.subscriber_count)
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            while True:
                next_update = asyncio.create_task(subscription.next())
                done, _ = await asyncio.wait(
                    {next_update, disconnected}, return_when=asyncio.FIRST_COMPLETED
                )
                if disconnected in done:
                    next_update.cancel()
                    break
                lagged = subscription.take_lagged()
                if lagged:
                    logger.warning("websocket_client_lagged", lagged=lagged)
                await websocket.send_text(next_update.result().model_dump_json())
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
            broadcaster.unsubscribe(subscription)
            logger.info("websocket_disconnected", subscribers=broadcaster.subscriber_count)

    return app


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client frames until the peer goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
