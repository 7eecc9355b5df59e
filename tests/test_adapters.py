from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import Any

import httpx
import pytest
from conftest import make_settings

from survival_bot.data.binance import floor_to_step
from survival_bot.data.sentiment import FearGreedClient
from survival_bot.errors import OracleError
from survival_bot.oracle.discord_client import DiscordOracleClient, _extract_oracle_reply
from survival_bot.types import Fill, Ticker


def _discord(tmp_path: Path, handler: Any, **overrides: Any) -> DiscordOracleClient:
    settings = make_settings(
        tmp_path, oracle_poll_interval_sec=0.01, oracle_poll_max_attempts=3, **overrides
    )
    http = httpx.AsyncClient(
        base_url="https://discord.test/api", transport=httpx.MockTransport(handler)
    )
    return DiscordOracleClient(settings, http=http)


def test_ticker_from_binance_payload() -> None:
    ticker = Ticker.from_payload(
        {
            "symbol": "BTCUSDC",
            "lastPrice": "64000.5",
            "quoteVolume": "1e6",
            "priceChangePercent": "-2.1",
        }
    )
    assert ticker.last_price == 64000.5
    assert ticker.quote_volume == 1_000_000.0
    assert ticker.price_change_percent == -2.1


def test_fill_from_order_aggregates_commission() -> None:
    fill = Fill.from_order(
        {
            "symbol": "BTCUSDC",
            "side": "BUY",
            "orderId": 12345,
            "status": "FILLED",
            "executedQty": "0.00200000",
            "cummulativeQuoteQty": "130.00",
            "fills": [
                {"commission": "0.000001", "commissionAsset": "BTC"},
                {"commission": "0.000001", "commissionAsset": "BTC"},
            ],
        }
    )
    assert fill.avg_price == pytest.approx(65_000.0)
    assert fill.commission == pytest.approx(0.000002)
    assert fill.net_quantity == pytest.approx(0.001998)
    assert fill.order_id == "12345"


def test_fill_with_quote_commission_keeps_quantity() -> None:
    fill = Fill("BTCUSDC", "BUY", 0.002, 65_000.0, 130.0, 0.13, commission_asset="USDC")
    assert fill.net_quantity == 0.002


def test_floor_to_step() -> None:
    assert floor_to_step(0.123456, Decimal("0.001")) == Decimal("0.123")
    assert floor_to_step(5.9, Decimal("1")) == Decimal("5")
    assert floor_to_step(0.0004, Decimal("0.001")) == Decimal("0")


def test_extract_oracle_reply_filters_author() -> None:
    messages = [
        {"author": {"id": "1"}, "content": "not me"},
        {"author": {"id": "42"}, "content": ""},
        {"author": {"id": "42"}, "content": "HOLD please"},
    ]
    assert _extract_oracle_reply(messages, "42") == "HOLD please"
    assert _extract_oracle_reply({"oops": True}, "42") is None


def test_discord_ask_sends_and_polls(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []
    polls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal polls
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"id": "1001"})
        polls += 1
        if polls < 2:
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[{"author": {"id": "42"}, "content": '{"action":"HOLD"}'}])

    client = _discord(tmp_path, handler)
    reply = asyncio.run(client.ask("hello"))

    assert reply == '{"action":"HOLD"}'
    assert seen[0].headers["Authorization"] == "Bot token"
    assert seen[0].url.path.endswith("/channels/123/messages")
    assert seen[1].url.params["after"] == "1001"
    assert polls == 2


def test_discord_poll_times_out(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"id": "1"})
        return httpx.Response(503)

    client = _discord(tmp_path, handler)
    assert asyncio.run(client.ask("hello")) is None


def test_discord_send_rejected_raises(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "Missing Access"})

    client = _discord(tmp_path, handler)
    with pytest.raises(OracleError):
        asyncio.run(client.send("hello"))


def test_discord_send_requires_token(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = _discord(tmp_path, handler, discord_bot_token="")
    with pytest.raises(OracleError):
        asyncio.run(client.send("hello"))


def _sentiment(tmp_path: Path, handler: Any) -> FearGreedClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FearGreedClient(make_settings(tmp_path), http=http)


def test_fear_greed_parses_and_clamps(tmp_path: Path) -> None:
    client = _sentiment(tmp_path, lambda r: httpx.Response(200, json={"data": [{"value": "73"}]}))
    assert asyncio.run(client.fetch_index()) == 73

    client = _sentiment(tmp_path, lambda r: httpx.Response(200, json={"data": [{"value": "150"}]}))
    assert asyncio.run(client.fetch_index()) == 100


def test_fear_greed_falls_back_to_neutral(tmp_path: Path) -> None:
    client = _sentiment(tmp_path, lambda r: httpx.Response(500))
    assert asyncio.run(client.fetch_index()) == 50

    client = _sentiment(tmp_path, lambda r: httpx.Response(200, json={"data": []}))
    assert asyncio.run(client.fetch_index()) == 50
