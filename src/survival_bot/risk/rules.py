"""Stop-loss / take-profit checks and position limits."""

from __future__ import annotations

import math

from survival_bot.config import Settings
from survival_bot.data.binance import Exchange
from survival_bot.errors import AdapterError, PersistenceError
from survival_bot.journal.models import Position
from survival_bot.journal.store import TradingStore
from survival_bot.types import RiskTrigger
from survival_bot.utils.logging import get_logger, log_risk_event


class RiskManager:
    """Rule-based risk controls over open positions."""

    def __init__(self, settings: Settings, store: TradingStore, exchange: Exchange) -> None:
        self._settings = settings
        self._store = store
        self._exchange = exchange
        self._logger = get_logger("survival_bot.risk.rules")

    async def check_positions(self) -> list[RiskTrigger]:
        """Refresh prices of open positions and collect SL/TP hits.

        A position whose ticker cannot be fetched is skipped for this cycle.
        """
        triggers: list[RiskTrigger] = []
        for position in await self._store.list_open_positions():
            try:
                ticker = await self._exchange.get_ticker(position.symbol)
            except AdapterError as exc:
                self._logger.warning(
                    "risk_price_fetch_failed",
                    position_id=position.id,
                    symbol=position.symbol,
                    error=str(exc),
                )
                continue
            price = ticker.last_price
            if price <= 0:
                self._logger.warning(
                    "risk_price_invalid", position_id=position.id, symbol=position.symbol
                )
                continue

            try:
                await self._store.update_position_price(position.id, price)
            except PersistenceError as exc:
                self._logger.warning(
                    "risk_price_update_failed", position_id=position.id, error=str(exc)
                )
            position.current_price = price

            trigger = evaluate_position(position, price)
            if trigger is not None:
                log_risk_event(
                    self._logger,
                    event_type=trigger.reason.lower(),
                    action="close_position",
                    position_id=position.id,
                    symbol=position.symbol,
                    price=price,
                    stop_loss=position.stop_loss,
                    take_profit=position.take_profit,
                )
                triggers.append(trigger)
        return triggers

    async def can_open_position(self) -> bool:
        open_count = await self._store.count_open_positions()
        allowed = open_count < self._settings.max_open_positions
        if not allowed:
            log_risk_event(
                self._logger,
                event_type="max_positions",
                action="skip_buy",
                open_positions=open_count,
                limit=self._settings.max_open_positions,
            )
        return allowed

    def validate_stop_loss(self, entry_price: float, proposed: float) -> float:
        """Clamp a stop-loss so it is never wider than the configured percentage."""
        floor = self.default_stop_loss(entry_price)
        if not math.isfinite(proposed) or proposed < floor:
            log_risk_event(
                self._logger,
                event_type="stop_loss_clamped",
                action="tighten_stop",
                entry_price=entry_price,
                proposed=proposed,
                clamped=floor,
            )
            return floor
        return proposed

    def default_stop_loss(self, entry_price: float) -> float:
        return entry_price * (1.0 - self._settings.max_stop_loss_pct / 100.0)


def evaluate_position(position: Position, price: float) -> RiskTrigger | None:
    """Stop-loss wins over take-profit; both bounds are inclusive."""
    if position.stop_loss is not None and price <= position.stop_loss:
        return RiskTrigger(position=position, reason="STOP_LOSS", price=price)
    if position.take_profit is not None and price >= position.take_profit:
        return RiskTrigger(position=position, reason="TAKE_PROFIT", price=price)
    return None
