import pytest

from survival_bot.risk.sizing import confidence_fraction, size_position


def test_high_confidence_uses_ten_percent() -> None:
    assert size_position(100.0, 95, 5.0) == pytest.approx(9.5)


def test_small_tradeable_balance_collapses_to_zero() -> None:
    # 3% of 45 is 1.35, under the exchange minimum.
    assert size_position(50.0, 75, 5.0) == 0.0


def test_confidence_brackets() -> None:
    assert confidence_fraction(100) == 0.10
    assert confidence_fraction(90) == 0.10
    assert confidence_fraction(89) == 0.06
    assert confidence_fraction(80) == 0.06
    assert confidence_fraction(79) == 0.03
    assert confidence_fraction(70) == 0.03
    assert confidence_fraction(69) == 0.0
    assert confidence_fraction(0) == 0.0


def test_zero_below_seventy_confidence() -> None:
    assert size_position(10_000.0, 69, 5.0) == 0.0


def test_zero_when_balance_at_or_below_reserve() -> None:
    assert size_position(5.0, 100, 5.0) == 0.0
    assert size_position(3.0, 100, 5.0) == 0.0
    assert size_position(0.0, 100, 5.0) == 0.0


def test_monotonic_in_confidence() -> None:
    balance = 1_000.0
    amounts = [size_position(balance, c, 5.0) for c in range(0, 101)]
    assert amounts == sorted(amounts)
    assert size_position(balance, 90, 5.0) == pytest.approx(99.5)
    assert size_position(balance, 80, 5.0) == pytest.approx(59.7)
    assert size_position(balance, 70, 5.0) == pytest.approx(29.85)


def test_minimum_order_boundary() -> None:
    # Exactly 5.0 passes; anything below does not.
    assert size_position(55.0, 95, 5.0) == pytest.approx(5.0)
    assert size_position(54.0, 95, 5.0) == 0.0
