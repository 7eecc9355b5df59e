from __future__ import annotations

import asyncio

import pytest

from survival_bot.errors import InvariantViolation
from survival_bot.journal.store import TradingStore


def _open(store: TradingStore, symbol: str = "BTCUSDC", entry: float = 100.0) -> int:
    position = asyncio.run(
        store.insert_position(
            symbol=symbol,
            side="BUY",
            quantity=0.1,
            entry_price=entry,
            stop_loss=entry * 0.95,
            take_profit=entry * 1.1,
        )
    )
    return position.id


def test_init_creates_alive_lifecycle(store: TradingStore) -> None:
    lifecycle = asyncio.run(store.get_lifecycle())
    assert lifecycle.is_dead is False
    assert lifecycle.death_reason is None
    # Idempotent.
    asyncio.run(store.init())
    assert asyncio.run(store.get_lifecycle()).is_dead is False


def test_kill_requires_reason_and_revive_clears_it(store: TradingStore) -> None:
    with pytest.raises(InvariantViolation):
        asyncio.run(store.kill_bot("   "))

    killed = asyncio.run(store.kill_bot("manual stop"))
    assert killed.is_dead is True
    assert killed.death_reason == "manual stop"
    assert asyncio.run(store.get_lifecycle()).is_dead is True

    revived = asyncio.run(store.revive_bot())
    assert revived.is_dead is False
    assert revived.death_reason is None


def test_position_lifecycle(store: TradingStore) -> None:
    first = _open(store, "BTCUSDC")
    second = _open(store, "ETHUSDC", entry=10.0)
    assert asyncio.run(store.count_open_positions()) == 2

    open_positions = asyncio.run(store.list_open_positions())
    assert [p.id for p in open_positions] == [second, first]

    asyncio.run(store.update_position_price(first, 104.0))
    btc = asyncio.run(store.get_open_position("BTCUSDC"))
    assert btc is not None
    assert btc.current_price == 104.0

    closed = asyncio.run(store.close_position(first, 0.4, "SELL_DECISION"))
    assert closed.status == "CLOSED"
    assert closed.pnl == pytest.approx(0.4)
    assert closed.closed_at is not None
    assert closed.close_reason == "SELL_DECISION"
    assert asyncio.run(store.get_open_position("BTCUSDC")) is None
    assert asyncio.run(store.count_open_positions()) == 1
    assert asyncio.run(store.total_realized_pnl()) == pytest.approx(0.4)


def test_closing_non_open_position_raises(store: TradingStore) -> None:
    position_id = _open(store)
    asyncio.run(store.close_position(position_id, -1.0, "STOP_LOSS"))
    with pytest.raises(InvariantViolation):
        asyncio.run(store.close_position(position_id, -1.0, "STOP_LOSS"))
    with pytest.raises(InvariantViolation):
        asyncio.run(store.close_position(9999, 0.0, "STOP_LOSS"))


def test_cycle_numbers_are_sequential(store: TradingStore) -> None:
    numbers = [
        asyncio.run(store.insert_cycle_log(balance=10.0, action="HOLD", result="HOLD")).cycle_number
        for _ in range(3)
    ]
    assert numbers == [1, 2, 3]
    logs = asyncio.run(store.list_cycle_logs(limit=2))
    assert [log.cycle_number for log in logs] == [3, 2]
    assert asyncio.run(store.count_cycles()) == 3


def test_consecutive_losses_ignores_hold_cycles(store: TradingStore) -> None:
    async def _seed() -> None:
        await store.insert_cycle_log(balance=10.0, action="SELL", result="WIN")
        await store.insert_cycle_log(balance=10.0, action="SELL", result="LOSS")
        await store.insert_cycle_log(balance=10.0, action="HOLD", result="HOLD")
        await store.insert_cycle_log(balance=10.0, action="SELL", result="LOSS")
        await store.insert_cycle_log(balance=10.0, action="ERROR", result="ERROR")

    asyncio.run(_seed())
    assert asyncio.run(store.consecutive_losses()) == 2

    asyncio.run(store.insert_cycle_log(balance=10.0, action="BUY", result="EXECUTED"))
    assert asyncio.run(store.consecutive_losses()) == 0


def test_consecutive_losses_window(store: TradingStore) -> None:
    async def _seed() -> None:
        for _ in range(25):
            await store.insert_cycle_log(balance=10.0, action="SELL", result="LOSS")

    asyncio.run(_seed())
    assert asyncio.run(store.consecutive_losses()) == 20
    assert asyncio.run(store.consecutive_losses(window=5)) == 5


def test_win_rate(store: TradingStore) -> None:
    assert asyncio.run(store.win_rate()) == 0.0

    async def _seed() -> None:
        await store.insert_cycle_log(balance=10.0, action="SELL", result="WIN")
        await store.insert_cycle_log(balance=10.0, action="SELL", result="WIN")
        await store.insert_cycle_log(balance=10.0, action="SELL", result="LOSS")
        await store.insert_cycle_log(balance=10.0, action="BUY", result="EXECUTED")
        await store.insert_cycle_log(balance=10.0, action="HOLD", result="HOLD")

    asyncio.run(_seed())
    assert asyncio.run(store.win_rate()) == pytest.approx(200.0 / 3.0)


def test_trades_and_snapshots_newest_first(store: TradingStore) -> None:
    async def _seed() -> None:
        for i in range(3):
            await store.insert_trade(
                position_id=None,
                symbol="BTCUSDC",
                side="BUY",
                quantity=0.1,
                price=100.0 + i,
                quote_amount=10.0,
                commission=0.01,
            )
            await store.insert_balance_snapshot(balance=100.0 + i, open_positions=i, total_pnl=0.0)

    asyncio.run(_seed())
    trades = asyncio.run(store.list_trades(limit=2))
    assert [t.price for t in trades] == [102.0, 101.0]
    assert asyncio.run(store.count_trades()) == 3

    snapshots = asyncio.run(store.list_balance_snapshots())
    assert [s.balance for s in snapshots] == [102.0, 101.0, 100.0]
    assert snapshots[0].to_dict()["open_positions"] == 2
