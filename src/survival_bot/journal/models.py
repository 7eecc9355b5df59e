"""ORM models for lifecycle, positions, trades, cycle logs and balance history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

POSITION_OPEN = "OPEN"
POSITION_CLOSED = "CLOSED"
LIFECYCLE_ROW_ID = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; they are always stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    normalized = as_utc(value)
    return normalized.isoformat() if normalized is not None else None


class BotLifecycle(Base):
    """Singleton alive/dead record."""

    __tablename__ = "bot_lifecycle"

    id = Column(Integer, primary_key=True, default=LIFECYCLE_ROW_ID)
    is_dead = Column(Boolean, nullable=False, default=False)
    death_reason = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_dead": bool(self.is_dead),
            "death_reason": self.death_reason,
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
        }


class Position(Base):
    """Open and closed spot positions."""

    __tablename__ = "positions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(30), nullable=False)
    side = Column(String(10), nullable=False, default="BUY")
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    current_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    status = Column(String(10), nullable=False, default=POSITION_OPEN)
    pnl = Column(Float, nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    close_reason = Column(String(30), nullable=True)

    __table_args__ = (Index("ix_positions_status_symbol", "status", "symbol"),)

    @property
    def is_open(self) -> bool:
        return self.status == POSITION_OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "current_price": self.current_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "status": self.status,
            "pnl": self.pnl,
            "opened_at": _iso(self.opened_at),
            "closed_at": _iso(self.closed_at),
            "close_reason": self.close_reason,
        }


class Trade(Base):
    """Executed fills. Never updated after insert."""

    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position_id = Column(Integer, nullable=True)
    symbol = Column(String(30), nullable=False)
    side = Column(String(10), nullable=False)
    quantity = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    quote_amount = Column(Float, nullable=False)
    commission = Column(Float, nullable=False, default=0.0)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "position_id": self.position_id,
            "symbol": self.symbol,
            "side": self.side,
            "quantity": self.quantity,
            "price": self.price,
            "quote_amount": self.quote_amount,
            "commission": self.commission,
            "executed_at": _iso(self.executed_at),
        }


class CycleLog(Base):
    """Append-only audit row per cycle."""

    __tablename__ = "cycle_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_number = Column(Integer, nullable=False)
    balance = Column(Float, nullable=False)
    action = Column(String(10), nullable=False)
    symbol = Column(String(30), nullable=True)
    confidence = Column(Integer, nullable=True)
    reasoning = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)
    fear_greed = Column(Integer, nullable=True)
    execution_ms = Column(Integer, nullable=False, default=0)
    result = Column(String(40), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_cycle_logs_action", "action"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cycle_number": self.cycle_number,
            "balance": self.balance,
            "action": self.action,
            "symbol": self.symbol,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "raw_response": self.raw_response,
            "fear_greed": self.fear_greed,
            "execution_ms": self.execution_ms,
            "result": self.result,
            "error": self.error,
            "created_at": _iso(self.created_at),
        }


class BalanceSnapshot(Base):
    """Point-in-time balance, written once per logged cycle."""

    __tablename__ = "balance_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    balance = Column(Float, nullable=False)
    open_positions = Column(Integer, nullable=False, default=0)
    total_pnl = Column(Float, nullable=False, default=0.0)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "balance": self.balance,
            "open_positions": self.open_positions,
            "total_pnl": self.total_pnl,
            "recorded_at": _iso(self.recorded_at),
        }
