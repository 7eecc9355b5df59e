"""Confidence-bracketed position sizing."""

from __future__ import annotations

MIN_ORDER_QUOTE = 5.0

# (minimum confidence, fraction of tradeable balance), highest bracket first.
_CONFIDENCE_BRACKETS: tuple[tuple[int, float], ...] = (
    (90, 0.10),
    (80, 0.06),
    (70, 0.03),
)


def confidence_fraction(confidence: int) -> float:
    """Fraction of tradeable balance allowed for a given confidence."""
    for floor, fraction in _CONFIDENCE_BRACKETS:
        if confidence >= floor:
            return fraction
    return 0.0


def size_position(
    balance: float,
    confidence: int,
    min_reserve: float,
    *,
    min_order: float = MIN_ORDER_QUOTE,
) -> float:
    """Compute the quote amount to spend on a BUY.

    The reserve is never traded. Amounts under the exchange minimum order
    collapse to 0.
    """
    tradeable = max(balance - min_reserve, 0.0)
    if tradeable <= 0:
        return 0.0
    amount = tradeable * confidence_fraction(confidence)
    if amount < min_order:
        return 0.0
    return float(amount)
