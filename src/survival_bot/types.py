"""Shared domain types for the trading cycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from survival_bot.journal.models import Position

Side = Literal["BUY", "SELL"]
CloseReason = Literal["STOP_LOSS", "TAKE_PROFIT", "SELL_DECISION"]

RESULT_HOLD = "HOLD"
RESULT_WIN = "WIN"
RESULT_LOSS = "LOSS"
RESULT_ERROR = "ERROR"
RESULT_EXECUTED = "EXECUTED"
SKIPPED_MAX_POSITIONS = "SKIPPED: max positions"
SKIPPED_INSUFFICIENT_SIZE = "SKIPPED: insufficient size"
SKIPPED_NO_POSITION = "SKIPPED: no open position"


@dataclass(slots=True)
class Ticker:
    """24h ticker summary for one market."""

    symbol: str
    last_price: float
    quote_volume: float
    price_change_percent: float

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Ticker":
        """Build from a Binance 24hr ticker payload (numbers arrive as strings)."""
        return cls(
            symbol=str(payload.get("symbol", "")),
            last_price=_to_float(payload.get("lastPrice")),
            quote_volume=_to_float(payload.get("quoteVolume")),
            price_change_percent=_to_float(payload.get("priceChangePercent")),
        )


@dataclass(slots=True)
class Fill:
    """Aggregated execution result of one market order."""

    symbol: str
    side: Side
    quantity: float
    avg_price: float
    quote_amount: float
    commission: float
    commission_asset: str | None = None
    order_id: str | None = None

    @property
    def net_quantity(self) -> float:
        """Quantity actually credited, net of commission paid in the base asset."""
        if self.side == "BUY" and self.commission_asset and self.symbol.startswith(
            self.commission_asset
        ):
            return max(0.0, self.quantity - self.commission)
        return self.quantity

    @classmethod
    def from_order(cls, order: dict[str, Any]) -> "Fill":
        """Derive quantity, average price and commission from an order response."""
        quantity = _to_float(order.get("executedQty"))
        quote_amount = _to_float(order.get("cummulativeQuoteQty"))
        avg_price = quote_amount / quantity if quantity > 0 else 0.0
        fills = order.get("fills") or []
        commission = sum(_to_float(f.get("commission")) for f in fills)
        commission_asset = fills[0].get("commissionAsset") if fills else None
        return cls(
            symbol=str(order.get("symbol", "")),
            side="SELL" if order.get("side") == "SELL" else "BUY",
            quantity=quantity,
            avg_price=avg_price,
            quote_amount=quote_amount,
            commission=commission,
            commission_asset=commission_asset,
            order_id=str(order["orderId"]) if order.get("orderId") is not None else None,
        )


@dataclass(slots=True)
class RiskTrigger:
    """An open position that hit its stop-loss or take-profit."""

    position: Position
    reason: Literal["STOP_LOSS", "TAKE_PROFIT"]
    price: float


@dataclass(slots=True)
class CycleResult:
    """Outcome of one cycle run."""

    status: str
    balance: float = 0.0
    action: str | None = None
    symbol: str | None = None
    result: str | None = None
    error: str | None = None
    cycle_number: int | None = None
    closed_by_risk: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
