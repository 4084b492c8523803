"""Stateless indicator functions over price / volume lists.

All functions are deterministic and never return NaN: when there is not
enough data they return an empty list or None.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from tokentrader.models.market_models import BollingerBands, MACDResult


def sma(values: Sequence[float], period: int) -> List[float]:
    """Sliding-window simple moving average (len(values) - period + 1 points)."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(values) < period:
        return []
    out: List[float] = []
    window = float(sum(values[:period]))
    out.append(window / period)
    for i in range(period, len(values)):
        window += float(values[i]) - float(values[i - period])
        out.append(window / period)
    return out


def ema(values: Sequence[float], period: int) -> List[float]:
    """EMA seeded with the first sample, multiplier 2/(period+1). Same length as input.

    There is no warm-up discard: early values lean towards the first sample,
    so callers need enough history before trusting the tail.
    """
    if period <= 0:
        raise ValueError("period must be > 0")
    if not values:
        return []
    k = 2.0 / (period + 1.0)
    out = [float(values[0])]
    for v in values[1:]:
        out.append(float(v) * k + out[-1] * (1.0 - k))
    return out


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation, 0 for fewer than 2 values."""
    n = len(values)
    if n < 2:
        return 0.0
    mean = sum(values) / n
    return math.sqrt(sum((float(v) - mean) ** 2 for v in values) / n)


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0.0:
        # flat series is neutral; only-gains saturates
        return 50.0 if avg_gain == 0.0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_series(prices: Sequence[float], period: int = 14) -> List[float]:
    """Wilder RSI. Needs period + 1 prices, returns len(prices) - period values."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(prices) < period + 1:
        return []

    changes = [float(prices[i]) - float(prices[i - 1]) for i in range(1, len(prices))]
    gains = [c if c > 0 else 0.0 for c in changes]
    losses = [-c if c < 0 else 0.0 for c in changes]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    out = [_rsi_from_averages(avg_gain, avg_loss)]

    for i in range(period, len(changes)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out.append(_rsi_from_averages(avg_gain, avg_loss))
    return out


def rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    values = rsi_series(prices, period)
    return values[-1] if values else None


def macd(
    prices: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Optional[MACDResult]:
    """MACD line = EMA(fast) - EMA(slow), signal = EMA(signal) of the line."""
    if len(prices) < max(fast_period, slow_period) + signal_period:
        return None
    fast = ema(prices, fast_period)
    slow = ema(prices, slow_period)
    line = [f - s for f, s in zip(fast, slow)]
    signal = ema(line, signal_period)
    histogram = [m - s for m, s in zip(line, signal)]
    return MACDResult(macd_line=line, signal_line=signal, histogram=histogram)


def bollinger_bands(prices: Sequence[float], period: int = 20, std_dev: float = 2.0) -> Optional[BollingerBands]:
    if len(prices) < period:
        return None
    window = [float(p) for p in prices[-period:]]
    middle = sum(window) / period
    sigma = standard_deviation(window)
    upper = middle + sigma * std_dev
    lower = middle - sigma * std_dev
    bandwidth = (upper - lower) / middle if middle else 0.0
    return BollingerBands(upper=upper, middle=middle, lower=lower, bandwidth=bandwidth)


def percent_change(old: float, new: float) -> float:
    if not old:
        return 0.0
    return (float(new) - float(old)) / float(old) * 100.0


def linear_regression_slope(values: Sequence[float]) -> float:
    """Least-squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2.0
    mean_y = sum(values) / n
    num = 0.0
    den = 0.0
    for i, v in enumerate(values):
        dx = i - mean_x
        num += dx * (float(v) - mean_y)
        den += dx * dx
    return num / den if den else 0.0


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation, 0 when either side has no variance."""
    n = min(len(xs), len(ys))
    if n < 2:
        return 0.0
    xs = [float(x) for x in xs[-n:]]
    ys = [float(y) for y in ys[-n:]]
    mx = sum(xs) / n
    my = sum(ys) / n
    cov = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    vx = sum((x - mx) ** 2 for x in xs)
    vy = sum((y - my) ** 2 for y in ys)
    if vx == 0 or vy == 0:
        return 0.0
    return cov / math.sqrt(vx * vy)


def volatility_pct(prices: Sequence[float]) -> float:
    """Standard deviation of step returns, in percent."""
    if len(prices) < 3:
        return 0.0
    returns = [percent_change(prices[i - 1], prices[i]) for i in range(1, len(prices))]
    return standard_deviation(returns)
