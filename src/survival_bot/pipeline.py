"""Cycle engine: one read-decide-execute-record pass per call."""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from time import perf_counter
from typing import Protocol

from survival_bot.config import Settings
from survival_bot.data.binance import Exchange
from survival_bot.errors import AdapterError, OracleError, PersistenceError, SurvivalBotError
from survival_bot.events import CycleBroadcaster, CycleUpdate
from survival_bot.journal.models import BotLifecycle, Position
from survival_bot.journal.store import TradingStore
from survival_bot.oracle.discord_client import Oracle
from survival_bot.oracle.prompt import build_prompt
from survival_bot.oracle.schemas import Decision, parse_decision
from survival_bot.risk.rules import RiskManager
from survival_bot.risk.sizing import size_position
from survival_bot.types import (
    RESULT_ERROR,
    RESULT_EXECUTED,
    RESULT_HOLD,
    RESULT_LOSS,
    RESULT_WIN,
    SKIPPED_INSUFFICIENT_SIZE,
    SKIPPED_MAX_POSITIONS,
    SKIPPED_NO_POSITION,
    CloseReason,
    CycleResult,
    RiskTrigger,
)
from survival_bot.utils.logging import get_logger, log_decision

ZERO_BALANCE_REASON = "balance reached zero"
LOW_RESERVE_REASON = "below minimum reserve"
ORACLE_TIMEOUT_REASON = "oracle timeout"

STATUS_DEAD = "dead"
STATUS_ERROR = "error"
STATUS_LOW_RESERVE = "low_reserve"
STATUS_ORACLE_TIMEOUT = "oracle_timeout"
STATUS_COMPLETED = "completed"

# Adapter, persistence and invariant failures are recorded on the cycle, not raised.
_STEP_ERRORS = (SurvivalBotError,)


class SentimentSource(Protocol):
    async def fetch_index(self) -> int: ...


class CycleEngine:
    """Runs trading cycles against injected collaborators.

    The engine keeps no state between cycles; everything is re-read from the
    store and the exchange at the start of each run.
    """

    def __init__(
        self,
        settings: Settings,
        store: TradingStore,
        exchange: Exchange,
        oracle: Oracle,
        sentiment: SentimentSource,
        broadcaster: CycleBroadcaster,
    ) -> None:
        self._settings = settings
        self._store = store
        self._exchange = exchange
        self._oracle = oracle
        self._sentiment = sentiment
        self._broadcaster = broadcaster
        self._risk = RiskManager(settings, store, exchange)
        self._lock = asyncio.Lock() if settings.serialize_cycles else None
        self._logger = get_logger("survival_bot.pipeline")

    @property
    def is_running(self) -> bool:
        return self._lock is not None and self._lock.locked()

    async def run_cycle(self) -> CycleResult:
        """Run one cycle; waits for an in-flight one when cycles are serialized."""
        async with AsyncExitStack() as stack:
            if self._lock is not None:
                await stack.enter_async_context(self._lock)
            return await self._run_cycle()

    async def kill_bot(self, reason: str) -> BotLifecycle:
        lifecycle = await self._store.kill_bot(reason)
        self._logger.warning("bot_killed", reason=lifecycle.death_reason)
        return lifecycle

    async def revive_bot(self) -> BotLifecycle:
        lifecycle = await self._store.revive_bot()
        self._logger.info("bot_revived")
        return lifecycle

    async def _run_cycle(self) -> CycleResult:
        started = perf_counter()
        self._logger.info("cycle_started")

        lifecycle = await self._store.get_lifecycle()
        if lifecycle.is_dead:
            self._logger.warning("cycle_skipped_dead", reason=lifecycle.death_reason)
            return _finish(CycleResult(status=STATUS_DEAD), started)

        try:
            balance = await self._exchange.get_balance()
        except AdapterError as exc:
            self._logger.error("balance_fetch_failed", error=str(exc))
            log = await self._store.insert_cycle_log(
                balance=0.0,
                action=RESULT_ERROR,
                result=RESULT_ERROR,
                error=str(exc),
                execution_ms=_elapsed_ms(started),
            )
            return _finish(
                CycleResult(
                    status=STATUS_ERROR,
                    action=RESULT_ERROR,
                    result=RESULT_ERROR,
                    error=str(exc),
                    cycle_number=log.cycle_number,
                ),
                started,
            )

        self._logger.info("balance_fetched", balance=balance)

        if balance <= 0:
            self._logger.warning("balance_zero_bot_dead", balance=balance)
            await self.kill_bot(ZERO_BALANCE_REASON)
            log = await self._store.insert_cycle_log(
                balance=balance,
                action=RESULT_ERROR,
                result=RESULT_ERROR,
                error=f"{ZERO_BALANCE_REASON}; bot terminated",
                execution_ms=_elapsed_ms(started),
            )
            await self._record_snapshot(balance)
            return _finish(
                CycleResult(
                    status=STATUS_DEAD,
                    balance=balance,
                    action=RESULT_ERROR,
                    result=RESULT_ERROR,
                    error=ZERO_BALANCE_REASON,
                    cycle_number=log.cycle_number,
                ),
                started,
            )

        if balance < self._settings.min_balance_usdc:
            self._logger.warning(
                "below_minimum_reserve",
                balance=balance,
                min_balance=self._settings.min_balance_usdc,
            )
            return await self._hold_early(
                balance, LOW_RESERVE_REASON, STATUS_LOW_RESERVE, started
            )

        result = CycleResult(status=STATUS_COMPLETED, balance=balance)
        await self._close_triggered(result)

        try:
            positions = await self._store.list_open_positions()
        except PersistenceError as exc:
            self._logger.warning("open_positions_read_failed", error=str(exc))
            positions = []
        try:
            tickers = await self._exchange.get_tickers()
        except AdapterError as exc:
            self._logger.warning("tickers_fetch_failed", error=str(exc))
            tickers = []
        fear_greed = await self._sentiment.fetch_index()
        try:
            loss_streak = await self._store.consecutive_losses()
        except PersistenceError as exc:
            self._logger.warning("loss_streak_read_failed", error=str(exc))
            loss_streak = 0

        prompt = build_prompt(
            balance=balance,
            fear_greed=fear_greed,
            loss_streak=loss_streak,
            positions=positions,
            tickers=tickers,
            oracle_user_id=self._settings.oracle_user_id,
            quote_asset=self._settings.quote_asset,
            top_markets=self._settings.top_markets,
            max_open_positions=self._settings.max_open_positions,
            max_stop_loss_pct=self._settings.max_stop_loss_pct,
            conservative_loss_streak=self._settings.conservative_loss_streak,
        )

        try:
            raw_response = await self._oracle.ask(prompt)
        except OracleError as exc:
            self._logger.error("oracle_communication_failed", error=str(exc))
            log = await self._store.insert_cycle_log(
                balance=balance,
                action=RESULT_ERROR,
                result=RESULT_ERROR,
                fear_greed=fear_greed,
                error=str(exc),
                execution_ms=_elapsed_ms(started),
            )
            await self._record_snapshot(balance)
            result.status = STATUS_ERROR
            result.action = RESULT_ERROR
            result.result = RESULT_ERROR
            result.error = str(exc)
            result.cycle_number = log.cycle_number
            return _finish(result, started)

        if raw_response is None:
            self._logger.warning("oracle_no_reply_default_hold")
            hold = await self._hold_early(
                balance, ORACLE_TIMEOUT_REASON, STATUS_ORACLE_TIMEOUT, started, fear_greed
            )
            hold.closed_by_risk = result.closed_by_risk
            hold.warnings = result.warnings
            return hold

        decision = parse_decision(raw_response)
        log_decision(
            self._logger,
            action=decision.action,
            symbol=decision.symbol,
            confidence=decision.confidence,
            stop_loss=decision.stop_loss,
            take_profit=decision.take_profit,
        )

        outcome, error = await self._execute(decision, balance)
        result.action = decision.action
        result.symbol = decision.symbol
        result.result = outcome
        result.error = error

        log = await self._store.insert_cycle_log(
            balance=balance,
            action=decision.action,
            symbol=decision.symbol,
            confidence=decision.confidence,
            reasoning=decision.reasoning,
            raw_response=raw_response,
            fear_greed=fear_greed,
            execution_ms=_elapsed_ms(started),
            result=outcome,
            error=error,
        )
        result.cycle_number = log.cycle_number

        updated_balance, total_pnl = await self._record_snapshot(balance, refresh=True)
        result.balance = updated_balance

        self._broadcaster.publish(
            CycleUpdate(
                cycle_number=log.cycle_number,
                balance=updated_balance,
                action=decision.action,
                symbol=decision.symbol,
                confidence=decision.confidence,
                reasoning=decision.reasoning,
                pnl=total_pnl,
                fear_greed=fear_greed,
            )
        )
        _finish(result, started)
        self._logger.info(
            "cycle_completed",
            cycle_number=log.cycle_number,
            action=decision.action,
            result=outcome,
            balance=updated_balance,
            elapsed_ms=round(result.elapsed_ms, 2),
        )
        return result

    async def _execute(self, decision: Decision, balance: float) -> tuple[str, str | None]:
        """Apply the decision. Returns (result, error)."""
        symbol = decision.symbol
        if decision.action == "HOLD" or symbol is None:
            return RESULT_HOLD, None
        try:
            if decision.action == "BUY":
                return await self._execute_buy(decision, symbol, balance), None
            return await self._execute_sell(symbol), None
        except _STEP_ERRORS as exc:
            self._logger.error(
                "decision_execution_failed",
                action=decision.action,
                symbol=decision.symbol,
                error=str(exc),
            )
            return RESULT_ERROR, str(exc)

    async def _execute_buy(self, decision: Decision, symbol: str, balance: float) -> str:
        if not await self._risk.can_open_position():
            self._logger.info("buy_skipped_max_positions", symbol=symbol)
            return SKIPPED_MAX_POSITIONS

        quote_amount = size_position(
            balance, decision.confidence, self._settings.min_balance_usdc
        )
        if quote_amount <= 0:
            self._logger.info(
                "buy_skipped_insufficient_size", symbol=symbol, confidence=decision.confidence
            )
            return SKIPPED_INSUFFICIENT_SIZE

        self._logger.info("buy_executing", symbol=symbol, quote_amount=quote_amount)
        fill = await self._exchange.market_buy(symbol, quote_amount)

        if decision.stop_loss is not None:
            stop_loss = self._risk.validate_stop_loss(fill.avg_price, decision.stop_loss)
        else:
            stop_loss = self._risk.default_stop_loss(fill.avg_price)

        position = await self._store.insert_position(
            symbol=symbol,
            side="BUY",
            quantity=fill.net_quantity,
            entry_price=fill.avg_price,
            stop_loss=stop_loss,
            take_profit=decision.take_profit,
        )
        await self._store.insert_trade(
            position_id=position.id,
            symbol=symbol,
            side="BUY",
            quantity=fill.quantity,
            price=fill.avg_price,
            quote_amount=fill.quote_amount,
            commission=fill.commission,
        )
        self._logger.info(
            "buy_executed",
            symbol=symbol,
            quantity=fill.net_quantity,
            price=fill.avg_price,
            quote_amount=fill.quote_amount,
        )
        return RESULT_EXECUTED

    async def _execute_sell(self, symbol: str) -> str:
        position = await self._store.get_open_position(symbol)
        if position is None:
            self._logger.info("sell_skipped_no_position", symbol=symbol)
            return SKIPPED_NO_POSITION

        pnl = await self._sell_and_close(position, "SELL_DECISION")
        outcome = RESULT_WIN if pnl >= 0 else RESULT_LOSS
        self._logger.info("sell_executed", symbol=symbol, pnl=pnl, result=outcome)
        return outcome

    async def _close_triggered(self, result: CycleResult) -> None:
        """Close every position that hit its stop-loss or take-profit."""
        try:
            triggers: list[RiskTrigger] = await self._risk.check_positions()
        except PersistenceError as exc:
            self._logger.warning("risk_check_failed", error=str(exc))
            result.warnings.append(f"risk_check_failed: {exc}")
            return

        for trigger in triggers:
            position = trigger.position
            try:
                pnl = await self._sell_and_close(position, trigger.reason)
            except _STEP_ERRORS as exc:
                self._logger.error(
                    "risk_close_failed",
                    position_id=position.id,
                    symbol=position.symbol,
                    reason=trigger.reason,
                    error=str(exc),
                )
                result.warnings.append(f"risk_close_failed: {position.symbol}")
                continue
            self._logger.info(
                "position_closed_by_risk",
                symbol=position.symbol,
                reason=trigger.reason,
                pnl=pnl,
            )
            result.closed_by_risk.append(position.symbol)

    async def _sell_and_close(self, position: Position, reason: CloseReason) -> float:
        """Market-sell the full position, close it and record the trade. Returns PnL."""
        fill = await self._exchange.market_sell(position.symbol, position.quantity)
        pnl = (fill.avg_price - position.entry_price) * position.quantity
        await self._store.close_position(position.id, pnl, reason)
        await self._store.insert_trade(
            position_id=position.id,
            symbol=position.symbol,
            side="SELL",
            quantity=fill.quantity,
            price=fill.avg_price,
            quote_amount=fill.quote_amount,
            commission=fill.commission,
        )
        return pnl

    async def _hold_early(
        self,
        balance: float,
        reason: str,
        status: str,
        started: float,
        fear_greed: int | None = None,
    ) -> CycleResult:
        log = await self._store.insert_cycle_log(
            balance=balance,
            action=RESULT_HOLD,
            reasoning=reason,
            fear_greed=fear_greed,
            result=RESULT_HOLD,
            execution_ms=_elapsed_ms(started),
        )
        await self._record_snapshot(balance)
        return _finish(
            CycleResult(
                status=status,
                balance=balance,
                action=RESULT_HOLD,
                result=RESULT_HOLD,
                cycle_number=log.cycle_number,
            ),
            started,
        )

    async def _record_snapshot(
        self, balance: float, *, refresh: bool = False
    ) -> tuple[float, float]:
        """Best-effort balance snapshot. Returns (balance, total realized PnL)."""
        if refresh:
            try:
                balance = await self._exchange.get_balance()
            except AdapterError as exc:
                self._logger.warning("balance_refresh_failed", error=str(exc))

        total_pnl = 0.0
        try:
            open_count = await self._store.count_open_positions()
            total_pnl = await self._store.total_realized_pnl()
            await self._store.insert_balance_snapshot(
                balance=balance, open_positions=open_count, total_pnl=total_pnl
            )
        except PersistenceError as exc:
            self._logger.warning("balance_snapshot_failed", error=str(exc))
        return balance, total_pnl


def _elapsed_ms(started: float) -> int:
    return int((perf_counter() - started) * 1000)


def _finish(result: CycleResult, started: float) -> CycleResult:
    result.elapsed_ms = (perf_counter() - started) * 1000
    return result
