"""Close-price patterns and price/RSI divergence."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from tokentrader.services.market.indicators import standard_deviation


DOUBLE_BOTTOM = "DOUBLE_BOTTOM"
DOUBLE_TOP = "DOUBLE_TOP"
BULLISH_BREAKOUT = "BULLISH_BREAKOUT"
BEARISH_BREAKOUT = "BEARISH_BREAKOUT"


@dataclass(frozen=True)
class Extrema:
    min_index: int
    max_index: int
    min_value: float
    max_value: float


def find_local_extrema(data: Sequence[float]) -> Extrema:
    """Lowest local minimum / highest local maximum (interior points).

    Falls back to the global min/max when no interior extremum exists.
    """
    if not data:
        raise ValueError("data must not be empty")
    values = [float(v) for v in data]
    if len(values) < 3:
        lo = values.index(min(values))
        hi = values.index(max(values))
        return Extrema(lo, hi, values[lo], values[hi])

    # endpoints are not candidates, so an interior turn may sit above values[0]
    min_i: Optional[int] = None
    max_i: Optional[int] = None
    min_v = math.inf
    max_v = -math.inf
    for i in range(1, len(values) - 1):
        v = values[i]
        if v < values[i - 1] and v < values[i + 1] and v < min_v:
            min_i, min_v = i, v
        if v > values[i - 1] and v > values[i + 1] and v > max_v:
            max_i, max_v = i, v

    if min_i is None:
        min_i = values.index(min(values))
        min_v = values[min_i]
    if max_i is None:
        max_i = values.index(max(values))
        max_v = values[max_i]
    return Extrema(min_i, max_i, min_v, max_v)


def check_divergence(prices: Sequence[float], indicator: Sequence[float]) -> Optional[str]:
    """'BULLISH' when price makes a lower low while the indicator makes a higher low,
    'BEARISH' for the mirrored case, else None."""
    if len(prices) < 4 or len(indicator) < 4:
        return None
    pe = find_local_extrema(prices)
    ie = find_local_extrema(indicator)

    if pe.min_index > 0 and ie.min_index > 0:
        if prices[pe.min_index] < prices[0] and indicator[ie.min_index] > indicator[0]:
            return "BULLISH"
    if pe.max_index > 0 and ie.max_index > 0:
        if prices[pe.max_index] > prices[0] and indicator[ie.max_index] < indicator[0]:
            return "BEARISH"
    return None


def _turns(prices: Sequence[float], lows: bool) -> List[Tuple[int, float]]:
    out: List[Tuple[int, float]] = []
    for i in range(1, len(prices) - 1):
        p = prices[i]
        if lows and p < prices[i - 1] and p < prices[i + 1]:
            out.append((i, float(p)))
        elif not lows and p > prices[i - 1] and p > prices[i + 1]:
            out.append((i, float(p)))
    return out


def is_double_bottom(prices: Sequence[float]) -> bool:
    """Two similar lows (within 2%, 3+ bars apart) followed by a 3% rebound."""
    if len(prices) < 7:
        return False
    minima = _turns(prices, lows=True)
    if len(minima) < 2:
        return False
    (pi, pv), (li, lv) = minima[-2], minima[-1]
    return abs(lv - pv) / pv < 0.02 and li - pi >= 3 and prices[-1] > lv * 1.03


def is_double_top(prices: Sequence[float]) -> bool:
    if len(prices) < 7:
        return False
    maxima = _turns(prices, lows=False)
    if len(maxima) < 2:
        return False
    (pi, pv), (li, lv) = maxima[-2], maxima[-1]
    return abs(lv - pv) / pv < 0.02 and li - pi >= 3 and prices[-1] < lv * 0.97


def detect_breakout(prices: Sequence[float]) -> Optional[str]:
    """Tight 7-bar range (sigma < 2% of mean) broken by 2 sigma within the next 3 bars."""
    if len(prices) < 10:
        return None
    recent = [float(p) for p in prices[-10:]]
    base = recent[:7]
    avg = sum(base) / len(base)
    sigma = standard_deviation(base)
    if avg <= 0 or sigma / avg >= 0.02:
        return None
    last = recent[-1]
    if last > avg + 2 * sigma:
        return BULLISH_BREAKOUT
    if last < avg - 2 * sigma:
        return BEARISH_BREAKOUT
    return None


def detect_patterns(prices: Sequence[float]) -> List[str]:
    if len(prices) < 10:
        return []
    recent = prices[-10:]
    found: List[str] = []
    if is_double_bottom(recent):
        found.append(DOUBLE_BOTTOM)
    if is_double_top(recent):
        found.append(DOUBLE_TOP)
    breakout = detect_breakout(prices)
    if breakout:
        found.append(breakout)
    return found
