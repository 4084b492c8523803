import pytest

from tokentrader.services.market.patterns import (
    BULLISH_BREAKOUT,
    BEARISH_BREAKOUT,
    DOUBLE_BOTTOM,
    DOUBLE_TOP,
    check_divergence,
    detect_breakout,
    detect_patterns,
    find_local_extrema,
)
from tokentrader.services.market.trend import analyze_trend, analyze_volume, trend_strength


def test_trend_strength_is_clipped():
    assert trend_strength([1.0, 100.0]) == 1.0
    assert trend_strength([100.0, 1.0]) == -1.0
    assert trend_strength([5.0]) == 0.0


def test_regression_uptrend_below_long_ema_history():
    prices = [100.0 * 1.05 ** i for i in range(60)]
    trend = analyze_trend(prices)
    assert trend.direction == "UP"
    assert trend.reason == "regression_up"
    assert trend.strength > 0.3


def test_flat_prices_are_neutral():
    trend = analyze_trend([10.0] * 60)
    assert trend.direction == "NEUTRAL"
    assert trend.strength == 0.0


def test_short_history_is_insufficient():
    assert analyze_trend([1.0, 2.0, 3.0]).reason == "insufficient_data"


def test_ema_dominance_with_long_history():
    prices = [100.0 * 1.01 ** i for i in range(250)]
    trend = analyze_trend(prices)
    assert trend.direction == "UP"
    assert trend.reason == "ema_short_above_long"
    assert trend.strength == 0.6


def test_volume_profile_increasing():
    profile = analyze_volume([100.0] * 12 + [200.0] * 12)
    assert profile.trend == "INCREASING"
    assert profile.volume_ratio == pytest.approx(200.0 / 150.0)
    assert profile.strength == pytest.approx((200.0 / 150.0 - 1.0) / 2.0 + 0.2)


def test_volume_profile_short_input_is_neutral():
    profile = analyze_volume([1.0] * 5)
    assert profile.volume_ratio == 1.0
    assert profile.trend == "NEUTRAL"


def test_breakout_from_tight_range():
    assert detect_breakout([100.0] * 9 + [105.0]) == BULLISH_BREAKOUT
    assert detect_breakout([100.0] * 9 + [95.0]) == BEARISH_BREAKOUT
    assert detect_breakout([100.0] * 10) is None


def test_double_bottom_and_top():
    bottom = [10, 9, 8, 9, 10, 9, 8.05, 9, 9.5, 10]
    assert detect_patterns(bottom) == [DOUBLE_BOTTOM]

    top = [8, 9, 10, 9, 8, 9, 9.95, 9, 8.5, 8]
    assert detect_patterns(top) == [DOUBLE_TOP]


def test_local_extrema_ignore_endpoints():
    ext = find_local_extrema([20, 25, 30, 28, 35])
    assert ext.min_index == 3
    assert ext.max_index == 2


def test_local_extrema_fall_back_to_global():
    ext = find_local_extrema([5, 4, 3, 2, 1])
    assert ext.min_index == 4
    assert ext.max_index == 0


def test_bullish_divergence():
    prices = [10, 8, 9, 7, 8]
    rsi = [20, 25, 30, 28, 35]
    assert check_divergence(prices, rsi) == "BULLISH"


def test_bearish_divergence():
    prices = [10, 12, 11, 13, 12]
    rsi = [80, 75, 70, 72, 65]
    assert check_divergence(prices, rsi) == "BEARISH"


def test_no_divergence_when_both_agree():
    assert check_divergence([5, 4, 3, 2, 1], [50, 40, 30, 20, 10]) is None
