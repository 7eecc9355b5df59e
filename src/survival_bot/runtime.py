"""Wires adapters, store and engine for one process."""

from __future__ import annotations

from dataclasses import dataclass

from survival_bot.config import Settings
from survival_bot.data.binance import BinanceExchange, Exchange
from survival_bot.data.sentiment import FearGreedClient
from survival_bot.events import CycleBroadcaster
from survival_bot.exec.paper import PaperExchange
from survival_bot.journal.store import TradingStore
from survival_bot.oracle.discord_client import DiscordOracleClient
from survival_bot.pipeline import CycleEngine
from survival_bot.utils.logging import get_logger


@dataclass(slots=True)
class Runtime:
    settings: Settings
    store: TradingStore
    market: BinanceExchange
    exchange: Exchange
    oracle: DiscordOracleClient
    sentiment: FearGreedClient
    broadcaster: CycleBroadcaster
    engine: CycleEngine

    async def aclose(self) -> None:
        await self.oracle.aclose()
        await self.sentiment.aclose()
        await self.market.aclose()
        await self.store.close()


async def open_runtime(settings: Settings) -> Runtime:
    """Build every collaborator; paper mode simulates fills on live prices."""
    logger = get_logger("survival_bot.runtime")
    settings.ensure_directories()

    store = TradingStore(settings.database_url)
    await store.init()

    market = BinanceExchange(settings)
    exchange: Exchange
    if settings.is_paper_mode:
        exchange = PaperExchange(
            market,
            settings.paper_state_file,
            quote_asset=settings.quote_asset,
            initial_balance=settings.paper_initial_balance,
            slippage_bps=settings.paper_slippage_bps,
            fee_rate=settings.paper_fee_rate,
        )
    else:
        exchange = market

    oracle = DiscordOracleClient(settings)
    sentiment = FearGreedClient(settings)
    broadcaster = CycleBroadcaster()
    engine = CycleEngine(settings, store, exchange, oracle, sentiment, broadcaster)

    logger.info(
        "runtime_ready",
        mode=settings.mode.value,
        quote_asset=settings.quote_asset,
        serialize_cycles=settings.serialize_cycles,
    )
    return Runtime(
        settings=settings,
        store=store,
        market=market,
        exchange=exchange,
        oracle=oracle,
        sentiment=sentiment,
        broadcaster=broadcaster,
        engine=engine,
    )
