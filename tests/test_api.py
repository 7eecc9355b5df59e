from __future__ import annotations

import asyncio
import json

from conftest import FakeExchange, FakeOracle, FakeSentiment
from fastapi.testclient import TestClient

from survival_bot.api.server import create_app
from survival_bot.config import Settings
from survival_bot.events import CycleBroadcaster
from survival_bot.journal.store import TradingStore
from survival_bot.pipeline import CycleEngine


def _client(settings: Settings, store: TradingStore) -> TestClient:
    broadcaster = CycleBroadcaster()
    reply = json.dumps({"action": "HOLD", "confidence": 30, "reasoning": "sideways"})
    engine = CycleEngine(
        settings, store, FakeExchange(), FakeOracle(reply=reply), FakeSentiment(), broadcaster
    )
    return TestClient(create_app(settings, store, engine, broadcaster))


def test_health(settings: Settings, store: TradingStore) -> None:
    with _client(settings, store) as client:
        response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"]


def test_status_on_fresh_store(settings: Settings, store: TradingStore) -> None:
    with _client(settings, store) as client:
        body = client.get("/status").json()
    assert body["is_alive"] is True
    assert body["balance_usdc"] == 0.0
    assert body["open_positions"] == 0
    assert body["total_cycles"] == 0
    assert body["win_rate"] == 0.0
    assert body["last_cycle_at"] is None


def test_listing_endpoints(settings: Settings, store: TradingStore) -> None:
    async def _seed() -> None:
        position = await store.insert_position(
            symbol="BTCUSDC",
            side="BUY",
            quantity=0.1,
            entry_price=100.0,
            stop_loss=95.0,
            take_profit=110.0,
        )
        await store.insert_trade(
            position_id=position.id,
            symbol="BTCUSDC",
            side="BUY",
            quantity=0.1,
            price=100.0,
            quote_amount=10.0,
            commission=0.0,
        )
        await store.insert_cycle_log(balance=90.0, action="BUY", result="EXECUTED")
        await store.insert_balance_snapshot(balance=90.0, open_positions=1, total_pnl=0.0)

    asyncio.run(_seed())
    with _client(settings, store) as client:
        positions = client.get("/positions").json()
        trades = client.get("/trades").json()
        cycles = client.get("/cycles").json()
        balance = client.get("/balance").json()
        status = client.get("/status").json()

    assert positions[0]["symbol"] == "BTCUSDC"
    assert positions[0]["status"] == "OPEN"
    assert trades[0]["quote_amount"] == 10.0
    assert cycles[0]["cycle_number"] == 1
    assert balance[0]["balance"] == 90.0
    assert status["balance_usdc"] == 90.0
    assert status["total_trades"] == 1
    assert status["last_cycle_at"] is not None


def test_kill_and_revive_require_secret(settings: Settings, store: TradingStore) -> None:
    with _client(settings, store) as client:
        assert client.post("/kill").status_code == 401
        assert client.post("/kill", headers={"X-Kill-Secret": "wrong"}).status_code == 401

        killed = client.post(
            "/kill", headers={"X-Kill-Secret": "s3cret"}, json={"reason": "maintenance"}
        )
        assert killed.status_code == 200
        assert killed.json()["death_reason"] == "maintenance"
        assert client.get("/status").json()["is_alive"] is False

        assert client.post("/revive").status_code == 401
        revived = client.post("/revive", headers={"X-Kill-Secret": "s3cret"})
        assert revived.status_code == 200
        assert client.get("/status").json()["is_alive"] is True


def test_kill_without_body_uses_default_reason(settings: Settings, store: TradingStore) -> None:
    with _client(settings, store) as client:
        response = client.post("/kill", headers={"X-Kill-Secret": "s3cret"})
    assert response.json()["death_reason"] == "manual kill switch activated"


def test_trigger_pushes_update_over_websocket(settings: Settings, store: TradingStore) -> None:
    with _client(settings, store) as client:
        with client.websocket_connect("/ws") as ws:
            response = client.post("/trigger")
            assert response.status_code == 202
            update = ws.receive_json()

    assert update["cycle_number"] == 1
    assert update["action"] == "HOLD"
    assert update["reasoning"] == "sideways"
    assert update["fear_greed"] == 50
