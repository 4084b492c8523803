"""Trend and volume-profile analysis over price / volume lists."""

from __future__ import annotations

from typing import List, Optional, Sequence

from tokentrader.models.market_models import TrendAnalysis, VolumeProfile
from tokentrader.services.market.indicators import ema, linear_regression_slope, pearson_correlation


def trend_strength(prices: Sequence[float]) -> float:
    """Regression slope normalised by average price, scaled into [-1, 1]."""
    if len(prices) < 2:
        return 0.0
    avg = sum(prices) / len(prices)
    if avg == 0:
        return 0.0
    normalized = linear_regression_slope(prices) / avg * 100.0
    return max(-1.0, min(1.0, normalized / 10.0))


def analyze_trend(
    prices: Sequence[float],
    *,
    short_window: int = 10,
    medium_window: int = 20,
    long_window: int = 50,
    ema_short_period: int = 50,
    ema_long_period: int = 200,
    threshold: float = 0.3,
) -> TrendAnalysis:
    """
    Direction from EMA dominance when the long EMA has enough history,
    otherwise from weighted short/medium/long regression slopes.
    """
    if len(prices) < short_window:
        return TrendAnalysis("NEUTRAL", 0.0, reason="insufficient_data")

    short = trend_strength(prices[-short_window:])
    medium = trend_strength(prices[-medium_window:])
    long_ = trend_strength(prices[-long_window:]) if len(prices) >= long_window else 0.0

    if len(prices) >= ema_long_period:
        fast = ema(prices, ema_short_period)
        slow = ema(prices, ema_long_period)
        if fast[-2] <= slow[-2] and fast[-1] > slow[-1]:
            return TrendAnalysis("UP", 0.8, short, medium, long_, "golden_cross")
        if fast[-2] >= slow[-2] and fast[-1] < slow[-1]:
            return TrendAnalysis("DOWN", 0.8, short, medium, long_, "death_cross")
        if fast[-1] > slow[-1]:
            return TrendAnalysis("UP", 0.6, short, medium, long_, "ema_short_above_long")
        return TrendAnalysis("DOWN", 0.6, short, medium, long_, "ema_short_below_long")

    net = short * 0.5 + medium * 0.3 + long_ * 0.2
    if net > threshold:
        return TrendAnalysis("UP", net, short, medium, long_, "regression_up")
    if net < -threshold:
        return TrendAnalysis("DOWN", abs(net), short, medium, long_, "regression_down")
    return TrendAnalysis("NEUTRAL", 0.0, short, medium, long_, "regression_flat")


def _step_changes(values: Sequence[float]) -> List[float]:
    out: List[float] = []
    for i in range(1, len(values)):
        prev = float(values[i - 1])
        out.append((float(values[i]) - prev) / prev if prev else 0.0)
    return out


def analyze_volume(
    volumes: Sequence[float],
    prices: Optional[Sequence[float]] = None,
    *,
    lookback: int = 24,
    threshold: float = 1.2,
) -> VolumeProfile:
    """Latest volume vs lookback average, half-split trend and price correlation."""
    if len(volumes) < 10:
        return VolumeProfile(volume_ratio=1.0)

    window = [float(v) for v in volumes[-min(lookback, len(volumes)):]]
    avg = sum(window) / len(window)
    latest = float(volumes[-1])
    ratio = latest / avg if avg > 0 else 0.0

    half = len(window) // 2
    first = window[:half]
    second = window[half:]
    first_avg = sum(first) / len(first) if first else 0.0
    second_avg = sum(second) / len(second) if second else 0.0
    volume_trend = second_avg / first_avg if first_avg > 0 else 1.0
    if volume_trend > 1.05:
        trend = "INCREASING"
    elif volume_trend < 0.95:
        trend = "DECREASING"
    else:
        trend = "NEUTRAL"

    correlation = 0.0
    if prices is not None and len(prices) == len(volumes) and len(prices) > 5:
        correlation = pearson_correlation(_step_changes(prices), _step_changes(volumes))

    strength = 0.0
    if ratio > threshold:
        strength = min(1.0, (ratio - 1.0) / 2.0)
    elif ratio < 0.7:
        strength = 0.3
    if trend == "INCREASING":
        strength += 0.2

    return VolumeProfile(
        volume_ratio=ratio,
        trend=trend,
        strength=strength,
        price_correlation=correlation,
        average_volume=avg,
    )
