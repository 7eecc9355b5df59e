"""Async SQL store for the bot's audit trail and trading state."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from survival_bot.errors import InvariantViolation, PersistenceError
from survival_bot.journal.models import (
    LIFECYCLE_ROW_ID,
    POSITION_CLOSED,
    POSITION_OPEN,
    BalanceSnapshot,
    Base,
    BotLifecycle,
    CycleLog,
    Position,
    Trade,
    utcnow,
)
from survival_bot.types import RESULT_LOSS, RESULT_WIN
from survival_bot.utils.logging import get_logger

_TRADE_ACTIONS = ("BUY", "SELL")
_LOSS_STREAK_WINDOW = 20


class TradingStore:
    """Single source of truth for lifecycle, positions, trades and logs.

    Every public method opens its own session and maps SQLAlchemy failures to
    ``PersistenceError``. Lists come back newest first.
    """

    def __init__(self, database_url: str) -> None:
        self._logger = get_logger("survival_bot.journal.store")
        engine_kw: dict[str, object] = {"echo": False}
        if database_url.startswith("sqlite"):
            engine_kw["poolclass"] = NullPool
            engine_kw["connect_args"] = {"timeout": 30}
        self._engine = create_async_engine(database_url, **engine_kw)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    async def init(self) -> None:
        """Create tables and the lifecycle row if missing."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"schema_init_failed: {exc}") from exc

        async with self.session() as session:
            if await session.get(BotLifecycle, LIFECYCLE_ROW_ID) is None:
                session.add(BotLifecycle(id=LIFECYCLE_ROW_ID, is_dead=False))
        self._logger.info("store_initialized", url=self._engine.url.render_as_string())

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session with commit on success and rollback on any failure."""
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(str(exc)) from exc
            except Exception:
                await session.rollback()
                raise

    # Lifecycle
    async def get_lifecycle(self) -> BotLifecycle:
        async with self.session() as session:
            lifecycle = await session.get(BotLifecycle, LIFECYCLE_ROW_ID)
            if lifecycle is None:
                lifecycle = BotLifecycle(id=LIFECYCLE_ROW_ID, is_dead=False)
                session.add(lifecycle)
            return lifecycle

    async def kill_bot(self, reason: str) -> BotLifecycle:
        """Mark the bot dead. A reason is mandatory."""
        if not reason or not reason.strip():
            raise InvariantViolation("death_reason_required")
        async with self.session() as session:
            lifecycle = await self._lifecycle_row(session)
            lifecycle.is_dead = True
            lifecycle.death_reason = reason.strip()
            lifecycle.updated_at = utcnow()
            return lifecycle

    async def revive_bot(self) -> BotLifecycle:
        async with self.session() as session:
            lifecycle = await self._lifecycle_row(session)
            lifecycle.is_dead = False
            lifecycle.death_reason = None
            lifecycle.updated_at = utcnow()
            return lifecycle

    # Positions
    async def list_open_positions(self) -> list[Position]:
        async with self.session() as session:
            rows = await session.scalars(
                select(Position)
                .where(Position.status == POSITION_OPEN)
                .order_by(Position.opened_at.desc(), Position.id.desc())
            )
            return list(rows.all())

    async def get_open_position(self, symbol: str) -> Position | None:
        async with self.session() as session:
            rows = await session.scalars(
                select(Position)
                .where(Position.status == POSITION_OPEN, Position.symbol == symbol)
                .order_by(Position.id.asc())
                .limit(1)
            )
            return rows.first()

    async def count_open_positions(self) -> int:
        async with self.session() as session:
            count = await session.scalar(
                select(func.count()).select_from(Position).where(Position.status == POSITION_OPEN)
            )
            return int(count or 0)

    async def insert_position(
        self,
        *,
        symbol: str,
        side: str,
        quantity: float,
        entry_price: float,
        stop_loss: float | None,
        take_profit: float | None,
    ) -> Position:
        async with self.session() as session:
            position = Position(
                symbol=symbol,
                side=side,
                quantity=quantity,
                entry_price=entry_price,
                current_price=entry_price,
                stop_loss=stop_loss,
                take_profit=take_profit,
                status=POSITION_OPEN,
            )
            session.add(position)
            await session.flush()
            self._logger.info(
                "position_opened",
                position_id=position.id,
                symbol=symbol,
                quantity=quantity,
                entry_price=entry_price,
                stop_loss=stop_loss,
                take_profit=take_profit,
            )
            return position

    async def update_position_price(self, position_id: int, price: float) -> None:
        async with self.session() as session:
            position = await session.get(Position, position_id)
            if position is not None and position.is_open:
                position.current_price = price

    async def close_position(self, position_id: int, pnl: float, reason: str) -> Position:
        """Close an OPEN position, setting pnl and closed_at together."""
        async with self.session() as session:
            position = await session.get(Position, position_id)
            if position is None:
                raise InvariantViolation(f"position_not_found: {position_id}")
            if not position.is_open:
                raise InvariantViolation(f"position_not_open: {position_id}")
            position.status = POSITION_CLOSED
            position.pnl = pnl
            position.closed_at = utcnow()
            position.close_reason = reason
            self._logger.info(
                "position_closed",
                position_id=position_id,
                symbol=position.symbol,
                pnl=pnl,
                reason=reason,
            )
            return position

    async def total_realized_pnl(self) -> float:
        async with self.session() as session:
            total = await session.scalar(
                select(func.sum(Position.pnl)).where(Position.status == POSITION_CLOSED)
            )
            return float(total or 0.0)

    # Trades
    async def insert_trade(
        self,
        *,
        position_id: int | None,
        symbol: str,
        side: str,
        quantity: float,
        price: float,
        quote_amount: float,
        commission: float,
    ) -> Trade:
        async with self.session() as session:
            trade = Trade(
                position_id=position_id,
                symbol=symbol,
                side=side,
                quantity=quantity,
                price=price,
                quote_amount=quote_amount,
                commission=commission,
            )
            session.add(trade)
            await session.flush()
            self._logger.info(
                "trade_recorded",
                trade_id=trade.id,
                position_id=position_id,
                symbol=symbol,
                side=side,
                quantity=quantity,
                price=price,
            )
            return trade

    async def list_trades(self, limit: int = 50) -> list[Trade]:
        async with self.session() as session:
            rows = await session.scalars(
                select(Trade).order_by(Trade.id.desc()).limit(limit)
            )
            return list(rows.all())

    async def count_trades(self) -> int:
        async with self.session() as session:
            return int(await session.scalar(select(func.count()).select_from(Trade)) or 0)

    # Cycle logs
    async def insert_cycle_log(
        self,
        *,
        balance: float,
        action: str,
        symbol: str | None = None,
        confidence: int | None = None,
        reasoning: str | None = None,
        raw_response: str | None = None,
        fear_greed: int | None = None,
        execution_ms: int = 0,
        result: str | None = None,
        error: str | None = None,
    ) -> CycleLog:
        """Append a cycle log; ``cycle_number`` continues from the highest stored one."""
        async with self.session() as session:
            last_number = await session.scalar(select(func.max(CycleLog.cycle_number)))
            log = CycleLog(
                cycle_number=int(last_number or 0) + 1,
                balance=balance,
                action=action,
                symbol=symbol,
                confidence=confidence,
                reasoning=reasoning,
                raw_response=raw_response,
                fear_greed=fear_greed,
                execution_ms=execution_ms,
                result=result,
                error=error,
            )
            session.add(log)
            await session.flush()
            return log

    async def list_cycle_logs(self, limit: int = 50) -> list[CycleLog]:
        async with self.session() as session:
            rows = await session.scalars(
                select(CycleLog).order_by(CycleLog.id.desc()).limit(limit)
            )
            return list(rows.all())

    async def count_cycles(self) -> int:
        async with self.session() as session:
            return int(await session.scalar(select(func.count()).select_from(CycleLog)) or 0)

    async def consecutive_losses(self, window: int = _LOSS_STREAK_WINDOW) -> int:
        """Most recent run of LOSS results among BUY/SELL cycles."""
        async with self.session() as session:
            rows = await session.scalars(
                select(CycleLog.result)
                .where(CycleLog.action.in_(_TRADE_ACTIONS))
                .order_by(CycleLog.id.desc())
                .limit(window)
            )
            streak = 0
            for result in rows.all():
                if result != RESULT_LOSS:
                    break
                streak += 1
            return streak

    async def win_rate(self) -> float:
        """Percentage of WIN among BUY/SELL cycles that closed with WIN or LOSS."""
        async with self.session() as session:
            decided = await session.scalar(
                select(func.count())
                .select_from(CycleLog)
                .where(
                    CycleLog.action.in_(_TRADE_ACTIONS),
                    CycleLog.result.in_((RESULT_WIN, RESULT_LOSS)),
                )
            )
            if not decided:
                return 0.0
            wins = await session.scalar(
                select(func.count())
                .select_from(CycleLog)
                .where(CycleLog.action.in_(_TRADE_ACTIONS), CycleLog.result == RESULT_WIN)
            )
            return float(wins or 0) / float(decided) * 100.0

    # Balance history
    async def insert_balance_snapshot(
        self,
        *,
        balance: float,
        open_positions: int,
        total_pnl: float,
    ) -> BalanceSnapshot:
        async with self.session() as session:
            snapshot = BalanceSnapshot(
                balance=balance,
                open_positions=open_positions,
                total_pnl=total_pnl,
            )
            session.add(snapshot)
            await session.flush()
            return snapshot

    async def list_balance_snapshots(self, limit: int = 100) -> list[BalanceSnapshot]:
        async with self.session() as session:
            rows = await session.scalars(
                select(BalanceSnapshot).order_by(BalanceSnapshot.id.desc()).limit(limit)
            )
            return list(rows.all())

    async def _lifecycle_row(self, session: AsyncSession) -> BotLifecycle:
        lifecycle = await session.get(BotLifecycle, LIFECYCLE_ROW_ID)
        if lifecycle is None:
            lifecycle = BotLifecycle(id=LIFECYCLE_ROW_ID, is_dead=False)
            session.add(lifecycle)
        return lifecycle
