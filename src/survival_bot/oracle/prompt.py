"""Prompt construction for the decision oracle."""

from __future__ import annotations

from collections.abc import Sequence

from survival_bot.journal.models import Position
from survival_bot.types import Ticker

_EXTREME_FEAR = 25
_MAX_TRADE_PCT = 10

_RESPONSE_FORMAT = """\
RESPOND WITH EXACTLY THIS JSON FORMAT (no markdown, no extra text):
```json
{
  "action": "BUY" | "SELL" | "HOLD",
  "symbol": "BTCUSDC" (required if BUY/SELL),
  "confidence": 0-100,
  "reasoning": "Brief explanation of your decision",
  "stop_loss": 50000.00 (required if BUY, price to cut losses),
  "take_profit": 55000.00 (required if BUY, price to take profit)
}
```
"""


def build_prompt(
    *,
    balance: float,
    fear_greed: int,
    loss_streak: int,
    positions: Sequence[Position],
    tickers: Sequence[Ticker],
    oracle_user_id: str,
    quote_asset: str = "USDC",
    top_markets: int = 10,
    max_open_positions: int = 2,
    max_stop_loss_pct: float = 5.0,
    conservative_loss_streak: int = 3,
) -> str:
    """Render the per-cycle analysis request."""
    lines: list[str] = []
    mention = f"<@{oracle_user_id}> " if oracle_user_id else ""
    lines.append(f"{mention}**SURVIVAL TRADING BOT - CYCLE ANALYSIS REQUEST**")
    lines.append("")
    lines.append(f"**Available {quote_asset} Balance:** ${balance:.2f}")
    lines.append(f"**Fear & Greed Index:** {fear_greed}/100")
    lines.append(f"**Consecutive Losses:** {loss_streak}")
    lines.append("")

    if positions:
        lines.append("**Open Positions:**")
        lines.extend(_format_position(p) for p in positions)
    else:
        lines.append("**Open Positions:** None")
    lines.append("")

    lines.append(f"**Top {quote_asset} Pairs (by 24h volume):**")
    for ticker in top_by_volume(tickers, top_markets):
        lines.append(
            f"  - {ticker.symbol} | Price: ${ticker.last_price:g} | "
            f"24h Change: {ticker.price_change_percent:.2f}% | "
            f"Volume: ${ticker.quote_volume:,.0f}"
        )
    lines.append("")

    rules = [
        "This is a SURVIVAL game. If balance reaches $0, the bot dies forever.",
        "Spot trading only. No leverage, no shorting, no derivatives.",
        f"Max {max_open_positions} open positions at any time.",
        f"Max {_MAX_TRADE_PCT}% of tradeable balance per trade.",
        f"Always set stop-loss (max {max_stop_loss_pct:g}% below entry) and take-profit.",
        f"If Fear & Greed < {_EXTREME_FEAR} (Extreme Fear), be very conservative.",
    ]
    if loss_streak >= conservative_loss_streak:
        rules.append(
            f"ULTRA-CONSERVATIVE MODE: {loss_streak} consecutive losses. "
            "Only trade with extremely high confidence."
        )
    lines.append("**RULES (MUST FOLLOW):**")
    lines.extend(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
    lines.append("")
    lines.append(_RESPONSE_FORMAT)
    return "\n".join(lines)


def top_by_volume(tickers: Sequence[Ticker], limit: int) -> list[Ticker]:
    """Highest quote-volume markets first."""
    ranked = sorted(tickers, key=lambda t: t.quote_volume, reverse=True)
    return ranked[: max(0, limit)]


def position_pnl_pct(position: Position) -> float:
    """Live PnL percentage using the last refreshed price."""
    if position.entry_price <= 0:
        return 0.0
    current = position.current_price or position.entry_price
    return (current - position.entry_price) / position.entry_price * 100.0


def _format_position(position: Position) -> str:
    current = position.current_price or position.entry_price
    sl = f"${position.stop_loss:.6f}" if position.stop_loss is not None else "N/A"
    tp = f"${position.take_profit:.6f}" if position.take_profit is not None else "N/A"
    return (
        f"  - {position.symbol} | Entry: ${position.entry_price:.6f} | "
        f"Current: ${current:.6f} | P&L: {position_pnl_pct(position):.2f}% | "
        f"SL: {sl} | TP: {tp}"
    )
