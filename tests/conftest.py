"""Shared fakes and fixtures for the cycle engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from survival_bot.config import Settings
from survival_bot.errors import ExchangeError
from survival_bot.journal.store import TradingStore
from survival_bot.types import Fill, Ticker


class FakeExchange:
    """In-memory market with fixed prices and recorded orders."""

    def __init__(self, balance: float = 100.0, prices: dict[str, float] | None = None) -> None:
        self.balance = balance
        self.prices = dict(prices or {"BTCUSDC": 100.0, "ETHUSDC": 10.0})
        self.fail_balance = False
        self.fail_tickers = False
        self.fail_orders = False
        self.unavailable: set[str] = set()
        self.buys: list[tuple[str, float]] = []
        self.sells: list[tuple[str, float]] = []
        self.balance_calls = 0

    async def get_balance(self) -> float:
        self.balance_calls += 1
        if self.fail_balance:
            raise ExchangeError("balance unavailable")
        return self.balance

    async def get_ticker(self, symbol: str) -> Ticker:
        if symbol in self.unavailable or symbol not in self.prices:
            raise ExchangeError(f"no ticker for {symbol}")
        return Ticker(symbol, self.prices[symbol], 1_000_000.0, 1.5)

    async def get_tickers(self) -> list[Ticker]:
        if self.fail_tickers:
            raise ExchangeError("tickers unavailable")
        return [Ticker(s, p, 1_000_000.0 * p, 1.5) for s, p in self.prices.items()]

    async def market_buy(self, symbol: str, quote_amount: float) -> Fill:
        if self.fail_orders:
            raise ExchangeError("order rejected")
        price = self.prices[symbol]
        self.buys.append((symbol, quote_amount))
        return Fill(
            symbol=symbol,
            side="BUY",
            quantity=quote_amount / price,
            avg_price=price,
            quote_amount=quote_amount,
            commission=0.0,
            commission_asset="USDC",
            order_id=f"fake-buy-{len(self.buys)}",
        )

    async def market_sell(self, symbol: str, quantity: float) -> Fill:
        if self.fail_orders:
            raise ExchangeError("order rejected")
        price = self.prices[symbol]
        self.sells.append((symbol, quantity))
        return Fill(
            symbol=symbol,
            side="SELL",
            quantity=quantity,
            avg_price=price,
            quote_amount=quantity * price,
            commission=0.0,
            commission_asset="USDC",
            order_id=f"fake-sell-{len(self.sells)}",
        )


class FakeOracle:
    """Returns a canned reply (or raises) and remembers every prompt."""

    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def send(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return "msg-1"

    async def poll_since(self, message_id: str) -> str | None:
        return self.reply

    async def ask(self, prompt: str) -> str | None:
        message_id = await self.send(prompt)
        return await self.poll_since(message_id)


class FakeSentiment:
    def __init__(self, value: int = 50) -> None:
        self.value = value
        self.calls = 0

    async def fetch_index(self) -> int:
        self.calls += 1
        return self.value


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'bot.db'}",
        "data_dir": tmp_path,
        "discord_bot_token": "token",
        "discord_channel_id": "123",
        "oracle_user_id": "42",
        "kill_secret": "s3cret",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def store(settings: Settings) -> Iterator[TradingStore]:
    trading_store = TradingStore(settings.database_url)
    asyncio.run(trading_store.init())
    yield trading_store
    asyncio.run(trading_store.close())


@pytest.fixture()
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture()
def sentiment() -> FakeSentiment:
    return FakeSentiment()
