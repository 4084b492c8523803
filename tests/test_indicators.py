import math

import pytest

from tokentrader.services.market import indicators as ta


def test_sma_sliding_window():
    assert ta.sma([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])
    assert ta.sma([1, 2], 3) == []


def test_ema_seeded_with_first_sample():
    out = ta.ema([10, 20], 3)
    # k = 2 / (3 + 1) = 0.5
    assert out == pytest.approx([10.0, 15.0])


def test_ema_rejects_non_positive_period():
    with pytest.raises(ValueError):
        ta.ema([1, 2, 3], 0)


def test_rsi_constant_series_is_neutral():
    assert ta.rsi([5.0] * 30) == 50.0


def test_rsi_only_gains_saturates():
    assert ta.rsi([float(i) for i in range(1, 31)]) == 100.0


def test_rsi_only_losses_is_zero():
    assert ta.rsi([float(i) for i in range(30, 0, -1)]) == 0.0


def test_rsi_needs_period_plus_one_prices():
    assert ta.rsi([1.0] * 14, period=14) is None
    assert len(ta.rsi_series([1.0] * 20, period=14)) == 6


def test_rsi_series_never_nan():
    prices = [1.0, 1.0, 2.0, 2.0, 1.5, 1.5, 1.5, 3.0] * 5
    values = ta.rsi_series(prices, 5)
    assert values
    assert all(0.0 <= v <= 100.0 and not math.isnan(v) for v in values)


def test_macd_requires_slow_plus_signal_samples():
    assert ta.macd([1.0] * 34) is None
    result = ta.macd([1.0] * 35)
    assert result is not None
    assert result.last_macd == pytest.approx(0.0)
    assert result.last_histogram == pytest.approx(0.0)


def test_macd_positive_in_uptrend():
    prices = [100.0 + i for i in range(60)]
    result = ta.macd(prices)
    assert result.last_macd > 0
    assert len(result.histogram) == len(prices)


def test_bollinger_bands_flat_series_collapse():
    bb = ta.bollinger_bands([2.0] * 20)
    assert bb.upper == bb.middle == bb.lower == 2.0
    assert bb.bandwidth == 0.0


def test_bollinger_bands_use_population_stddev():
    prices = [1.0, 3.0] * 10
    bb = ta.bollinger_bands(prices, period=20, std_dev=2.0)
    assert bb.middle == pytest.approx(2.0)
    assert bb.upper == pytest.approx(4.0)
    assert bb.lower == pytest.approx(0.0)


def test_bollinger_bands_insufficient_data():
    assert ta.bollinger_bands([1.0] * 5, period=20) is None


def test_percent_change_guards_zero_base():
    assert ta.percent_change(0, 5) == 0.0
    assert ta.percent_change(100, 110) == pytest.approx(10.0)


def test_linear_regression_slope():
    assert ta.linear_regression_slope([1, 3, 5, 7]) == pytest.approx(2.0)
    assert ta.linear_regression_slope([4]) == 0.0


def test_pearson_correlation_without_variance_is_zero():
    assert ta.pearson_correlation([1, 1, 1], [1, 2, 3]) == 0.0
    assert ta.pearson_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)


def test_volatility_pct_of_steady_returns_is_zero():
    prices = [100.0 * 1.01 ** i for i in range(10)]
    assert ta.volatility_pct(prices) == pytest.approx(0.0, abs=1e-9)
    assert ta.volatility_pct([1.0, 2.0]) == 0.0
