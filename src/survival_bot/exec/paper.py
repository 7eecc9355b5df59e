"""Paper trading exchange with persistent local state."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any

from survival_bot.data.binance import Exchange
from survival_bot.errors import ExchangeError
from survival_bot.types import Fill, Ticker
from survival_bot.utils.logging import get_logger, log_order_execution

_QTY_TOLERANCE = 1e-9


@dataclass(slots=True)
class _PaperState:
    balance: float
    initial_balance: float
    holdings: dict[str, float] = field(default_factory=dict)
    updated_at: str = ""


class PaperExchange:
    """Simulated spot fills on top of live market data."""

    def __init__(
        self,
        market: Exchange,
        state_file: Path,
        *,
        quote_asset: str = "USDC",
        initial_balance: float = 100.0,
        slippage_bps: float = 5.0,
        fee_rate: float = 0.001,
    ) -> None:
        self._market = market
        self._state_file = state_file
        self._quote_asset = quote_asset
        self._slippage_bps = slippage_bps
        self._fee_rate = fee_rate
        self._order_ids = count(1)
        self._logger = get_logger("survival_bot.exec.paper")
        self._state = self._load_state(initial_balance)

    @property
    def holdings(self) -> dict[str, float]:
        return dict(self._state.holdings)

    async def get_balance(self) -> float:
        return self._state.balance

    async def get_ticker(self, symbol: str) -> Ticker:
        return await self._market.get_ticker(symbol)

    async def get_tickers(self) -> list[Ticker]:
        return await self._market.get_tickers()

    async def market_buy(self, symbol: str, quote_amount: float) -> Fill:
        """Spend ``quote_amount`` (commission included) at last price plus slippage."""
        if quote_amount <= 0:
            raise ExchangeError("quote_amount_must_be_positive")
        if quote_amount > self._state.balance + _QTY_TOLERANCE:
            raise ExchangeError(
                f"insufficient_paper_balance: need={quote_amount:.2f} "
                f"have={self._state.balance:.2f}"
            )
        last_price = await self._last_price(symbol)
        fill_price = last_price * (1.0 + self._slippage_bps / 10_000.0)
        commission = quote_amount * self._fee_rate
        quantity = (quote_amount - commission) / fill_price

        self._state.balance -= quote_amount
        self._state.holdings[symbol] = self._state.holdings.get(symbol, 0.0) + quantity
        self._persist()
        return self._fill(symbol, "BUY", quantity, fill_price, quantity * fill_price, commission)

    async def market_sell(self, symbol: str, quantity: float) -> Fill:
        """Sell held units at last price minus slippage."""
        held = self._state.holdings.get(symbol, 0.0)
        if quantity <= 0:
            raise ExchangeError("quantity_must_be_positive")
        if quantity > held + _QTY_TOLERANCE:
            raise ExchangeError(
                f"insufficient_paper_holdings: {symbol} need={quantity} have={held}"
            )
        last_price = await self._last_price(symbol)
        fill_price = last_price * (1.0 - self._slippage_bps / 10_000.0)
        proceeds = quantity * fill_price
        commission = proceeds * self._fee_rate

        self._state.balance += proceeds - commission
        remaining = held - quantity
        if remaining <= _QTY_TOLERANCE:
            self._state.holdings.pop(symbol, None)
        else:
            self._state.holdings[symbol] = remaining
        self._persist()
        return self._fill(symbol, "SELL", quantity, fill_price, proceeds, commission)

    async def _last_price(self, symbol: str) -> float:
        ticker = await self._market.get_ticker(symbol)
        if ticker.last_price <= 0:
            raise ExchangeError(f"no_market_price: {symbol}")
        return ticker.last_price

    def _fill(
        self,
        symbol: str,
        side: str,
        quantity: float,
        price: float,
        quote_amount: float,
        commission: float,
    ) -> Fill:
        order_id = f"paper-{next(self._order_ids)}"
        log_order_execution(
            self._logger,
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            order_id=order_id,
            status="filled",
            paper_balance=round(self._state.balance, 8),
        )
        return Fill(
            symbol=symbol,
            side="SELL" if side == "SELL" else "BUY",
            quantity=float(quantity),
            avg_price=float(price),
            quote_amount=float(quote_amount),
            commission=float(commission),
            commission_asset=self._quote_asset,
            order_id=order_id,
        )

    def _load_state(self, initial_balance: float) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState(balance=initial_balance, initial_balance=initial_balance)

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        holdings = raw.get("holdings")
        return _PaperState(
            balance=float(raw.get("balance", initial_balance)),
            initial_balance=float(raw.get("initial_balance", initial_balance)),
            holdings={str(k): float(v) for k, v in holdings.items()}
            if isinstance(holdings, dict)
            else {},
            updated_at=str(raw.get("updated_at", "")),
        )

    def _persist(self) -> None:
        self._state.updated_at = datetime.now(timezone.utc).isoformat()
        payload: dict[str, Any] = {
            "balance": self._state.balance,
            "initial_balance": self._state.initial_balance,
            "holdings": self._state.holdings,
            "updated_at": self._state.updated_at,
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        self._state_file.write_text(serialized, encoding="utf-8")
