"""Support and resistance levels from pivot clustering."""

from __future__ import annotations

from typing import List, Optional, Sequence

from tokentrader.models.market_models import Level, SupportResistance
from tokentrader.services.market.indicators import standard_deviation


SUPPORT = "SUPPORT"
RESISTANCE = "RESISTANCE"


def find_pivots(prices: Sequence[float]) -> List[Level]:
    """Strict 5-point extrema: price[i] beats both neighbours on each side."""
    pivots: List[Level] = []
    for i in range(2, len(prices) - 2):
        p = prices[i]
        if p > prices[i - 1] and p > prices[i - 2] and p > prices[i + 1] and p > prices[i + 2]:
            pivots.append(Level(price=float(p), kind=RESISTANCE, strength=0.0))
        elif p < prices[i - 1] and p < prices[i - 2] and p < prices[i + 1] and p < prices[i + 2]:
            pivots.append(Level(price=float(p), kind=SUPPORT, strength=0.0))
    return pivots


def _flush(group: List[Level]) -> Level:
    avg = sum(p.price for p in group) / len(group)
    return Level(price=avg, kind=group[0].kind, strength=min(1.0, len(group) / 3.0), points=len(group))


def cluster_pivots(pivots: Sequence[Level], prices: Sequence[float]) -> List[Level]:
    """Merge price-sorted pivots of the same kind closer than 0.5 * stddev(prices)."""
    if not pivots:
        return []
    threshold = standard_deviation(prices) * 0.5
    ordered = sorted(pivots, key=lambda p: p.price)

    out: List[Level] = []
    group = [ordered[0]]
    for pivot in ordered[1:]:
        last = group[-1]
        if abs(pivot.price - last.price) < threshold and pivot.kind == last.kind:
            group.append(pivot)
        else:
            out.append(_flush(group))
            group = [pivot]
    out.append(_flush(group))
    return out


def compute_levels(prices: Sequence[float], min_points: int = 20) -> SupportResistance:
    """Supports/resistances plus the closest ones around the last price.

    Fewer than `min_points` prices yields empty levels.
    """
    if len(prices) < min_points:
        return SupportResistance()

    levels = cluster_pivots(find_pivots(prices), prices)
    supports = [lv for lv in levels if lv.kind == SUPPORT]
    resistances = [lv for lv in levels if lv.kind == RESISTANCE]

    current = float(prices[-1])
    below = [s for s in supports if s.price < current]
    above = [r for r in resistances if r.price > current]
    closest_support = max(below, key=lambda s: s.price) if below else None
    closest_resistance = min(above, key=lambda r: r.price) if above else None

    return SupportResistance(
        supports=supports,
        resistances=resistances,
        closest_support=closest_support,
        closest_resistance=closest_resistance,
    )


def distance_pct(price: float, level: Optional[Level]) -> Optional[float]:
    """Absolute distance from price to level, in percent of price."""
    if level is None or price <= 0:
        return None
    return abs(price - level.price) / price * 100.0


def near_level(price: float, level: Optional[Level], proximity_pct: float) -> bool:
    d = distance_pct(price, level)
    return d is not None and d <= proximity_pct
