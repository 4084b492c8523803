import math

import pytest

from tokentrader.models.errors import INVALID_PRICE, NO_CAPITAL
from tokentrader.services.risk.position_sizer import PositionSizer, kelly_fraction


@pytest.fixture
def sizer():
    return PositionSizer(base_trade_size_pct=2.0, max_position_size_pct=5.0, stop_loss_pct=5.0, take_profit_pct=15.0)


def test_fixed_mode(sizer):
    d = sizer.compute(mode="fixed", price=2.0, capital=10_000, available=10_000)
    assert d.allowed
    assert d.value == pytest.approx(200.0)
    assert d.amount == pytest.approx(100.0)
    assert d.size_pct == pytest.approx(2.0)


def test_kelly_fraction_formula():
    # b = 3, p = 0.5 -> (1.5 - 0.5) / 3
    assert kelly_fraction(0.5, 15.0, 5.0) == pytest.approx(1.0 / 3.0)
    assert kelly_fraction(0.5, 0.0, 5.0) == 0.0


def test_kelly_is_capped_at_max_position(sizer):
    d = sizer.compute(mode="kelly", price=1.0, capital=10_000, available=10_000, confidence=0.5)
    assert d.value == pytest.approx(500.0)


def test_kelly_negative_edge_sizes_zero(sizer):
    d = sizer.compute(mode="kelly", price=1.0, capital=10_000, available=10_000, confidence=0.1)
    assert not d.allowed
    assert d.amount == 0.0


def test_kelly_without_signal_assumes_even_odds(sizer):
    d = sizer.compute(mode="kelly", price=1.0, capital=10_000, available=10_000)
    assert d.value == pytest.approx(500.0)


def test_volatility_mode_scales_down_with_floor(sizer):
    half = sizer.compute(mode="volatility", price=1.0, capital=10_000, available=10_000, volatility=25.0)
    assert half.value == pytest.approx(100.0)
    floor = sizer.compute(mode="volatility", price=1.0, capital=10_000, available=10_000, volatility=500.0)
    assert floor.value == pytest.approx(40.0)


def test_adaptive_mode_shrinks_above_threshold(sizer):
    small = sizer.compute(mode="adaptive", price=1.0, capital=5_000, available=5_000, confidence=1.0)
    assert small.value == pytest.approx(100.0)

    large = sizer.compute(mode="adaptive", price=1.0, capital=20_000, available=20_000, confidence=0.5)
    expected = 20_000 * 0.02 / (1 + math.log(2.0)) * 0.5
    assert large.value == pytest.approx(expected)


def test_capped_by_available_capital(sizer):
    d = sizer.compute(mode="fixed", price=1.0, capital=10_000, available=50.0)
    assert d.value == pytest.approx(50.0)


def test_invalid_price_and_no_capital(sizer):
    assert sizer.compute(mode="fixed", price=0, capital=10_000, available=10_000).reason == INVALID_PRICE
    assert sizer.compute(mode="fixed", price=None, capital=10_000, available=10_000).reason == INVALID_PRICE
    assert sizer.compute(mode="fixed", price=1.0, capital=0, available=0).reason == NO_CAPITAL


def test_unknown_mode(sizer):
    with pytest.raises(ValueError):
        sizer.compute(mode="martingale", price=1.0, capital=10_000, available=10_000)
