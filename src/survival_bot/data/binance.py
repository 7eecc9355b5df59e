"""Binance spot exchange adapter."""

from __future__ import annotations

import asyncio
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol

from binance import AsyncClient  # type: ignore[import-untyped]

from survival_bot.config import Settings
from survival_bot.errors import ExchangeError
from survival_bot.types import Fill, Ticker
from survival_bot.utils.logging import get_logger, log_order_execution


class Exchange(Protocol):
    """Operations the cycle engine needs from a market."""

    async def get_balance(self) -> float: ...

    async def get_ticker(self, symbol: str) -> Ticker: ...

    async def get_tickers(self) -> list[Ticker]: ...

    async def market_buy(self, symbol: str, quote_amount: float) -> Fill: ...

    async def market_sell(self, symbol: str, quantity: float) -> Fill: ...


class BinanceExchange:
    """Spot account, ticker and market-order access."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger("survival_bot.data.binance")
        self._client: AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._step_sizes: dict[str, Decimal] = {}

    async def get_balance(self) -> float:
        """Free balance of the configured quote asset."""
        asset = self._settings.quote_asset
        payload = await self._call("get_asset_balance", asset=asset)
        balance = float(payload.get("free", 0.0)) if isinstance(payload, dict) else 0.0
        self._logger.info("balance_fetched", asset=asset, balance=balance)
        return balance

    async def get_ticker(self, symbol: str) -> Ticker:
        payload = await self._call("get_ticker", symbol=symbol)
        if not isinstance(payload, dict):
            raise ExchangeError(f"unexpected_ticker_payload: {symbol}")
        return Ticker.from_payload(payload)

    async def get_tickers(self) -> list[Ticker]:
        """24h tickers for every market quoted in the configured asset."""
        payload = await self._call("get_ticker")
        if not isinstance(payload, list):
            raise ExchangeError("unexpected_tickers_payload")
        quote = self._settings.quote_asset
        tickers = [
            Ticker.from_payload(row)
            for row in payload
            if isinstance(row, dict) and str(row.get("symbol", "")).endswith(quote)
        ]
        self._logger.info("tickers_fetched", quote_asset=quote, count=len(tickers))
        return tickers

    async def market_buy(self, symbol: str, quote_amount: float) -> Fill:
        """Buy ``quote_amount`` worth of ``symbol`` at market."""
        log_order_execution(
            self._logger, symbol=symbol, side="BUY", quantity=0.0, quote_amount=quote_amount
        )
        order = await self._call(
            "order_market_buy",
            symbol=symbol,
            quoteOrderQty=f"{quote_amount:.2f}",
        )
        return self._to_fill(order, symbol, "BUY")

    async def market_sell(self, symbol: str, quantity: float) -> Fill:
        """Sell ``quantity`` units of ``symbol`` at market."""
        step = await self._step_size(symbol)
        qty = floor_to_step(quantity, step)
        if qty <= 0:
            raise ExchangeError(f"sell_quantity_below_step: {symbol} qty={quantity} step={step}")
        log_order_execution(self._logger, symbol=symbol, side="SELL", quantity=float(qty))
        order = await self._call("order_market_sell", symbol=symbol, quantity=format(qty, "f"))
        return self._to_fill(order, symbol, "SELL")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close_connection()
            self._client = None

    def _to_fill(self, order: Any, symbol: str, side: str) -> Fill:
        if not isinstance(order, dict):
            raise ExchangeError(f"unexpected_order_payload: {symbol}")
        fill = Fill.from_order(order)
        log_order_execution(
            self._logger,
            symbol=symbol,
            side=side,
            quantity=fill.quantity,
            price=fill.avg_price,
            order_id=fill.order_id,
            status=str(order.get("status", "unknown")).lower(),
            commission=fill.commission,
        )
        return fill

    async def _step_size(self, symbol: str) -> Decimal:
        cached = self._step_sizes.get(symbol)
        if cached is not None:
            return cached
        info = await self._call("get_symbol_info", symbol)
        step = Decimal("0")
        if isinstance(info, dict):
            for rule in info.get("filters", []):
                if rule.get("filterType") == "LOT_SIZE":
                    step = Decimal(str(rule.get("stepSize", "0")))
                    break
        self._step_sizes[symbol] = step
        return step

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            return await getattr(client, method)(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001 - every client failure surfaces as ExchangeError.
            self._logger.warning("binance_call_failed", method=method, error=str(exc))
            raise ExchangeError(f"{method} failed: {exc}") from exc

    async def _get_client(self) -> AsyncClient:
        async with self._client_lock:
            if self._client is None:
                try:
                    self._client = await AsyncClient.create(
                        api_key=self._settings.binance_api_key or None,
                        api_secret=self._settings.binance_api_secret or None,
                        testnet=self._settings.binance_testnet,
                    )
                except Exception as exc:  # noqa: BLE001 - connection failures are adapter errors.
                    raise ExchangeError(f"binance_connect_failed: {exc}") from exc
            return self._client


def floor_to_step(quantity: float, step: Decimal) -> Decimal:
    """Round ``quantity`` down to a multiple of the LOT_SIZE step."""
    value = Decimal(str(quantity))
    if step <= 0:
        return value.quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)
    return ((value / step).to_integral_value(rounding=ROUND_DOWN) * step).normalize()
