"""Market domain models."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class PricePoint:
    timestamp: float        # epoch seconds
    price: float
    volume: float = 0.0


@dataclass(frozen=True)
class PriceSeries:
    """Ordered samples for one token. Frozen once handed to the indicator engine."""

    token: str
    points: Tuple[PricePoint, ...] = ()

    @classmethod
    def from_points(cls, token: str, points: Sequence[PricePoint]) -> "PriceSeries":
        return cls(token=token, points=tuple(sorted(points, key=lambda p: p.timestamp)))

    @classmethod
    def from_values(
        cls,
        token: str,
        prices: Sequence[float],
        volumes: Optional[Sequence[float]] = None,
        *,
        start: float = 0.0,
        step: float = 60.0,
    ) -> "PriceSeries":
        vols = list(volumes) if volumes is not None else [0.0] * len(prices)
        if len(vols) != len(prices):
            raise ValueError("prices and volumes must have the same length")
        pts = tuple(
            PricePoint(timestamp=start + i * step, price=float(p), volume=float(v))
            for i, (p, v) in enumerate(zip(prices, vols))
        )
        return cls(token=token, points=pts)

    def append(self, point: PricePoint) -> "PriceSeries":
        return PriceSeries(token=self.token, points=self.points + (point,))

    @property
    def prices(self) -> List[float]:
        return [p.price for p in self.points]

    @property
    def volumes(self) -> List[float]:
        return [p.volume for p in self.points]

    @property
    def last_price(self) -> Optional[float]:
        return self.points[-1].price if self.points else None

    def __len__(self) -> int:
        return len(self.points)

    def is_valid(self, min_points: int) -> bool:
        """Enough finite samples, prices > 0 and volumes >= 0."""
        if len(self.points) < min_points:
            return False
        for p in self.points:
            if p.price is None or p.volume is None:
                return False
            if not (math.isfinite(p.price) and math.isfinite(p.volume)):
                return False
            if p.price <= 0 or p.volume < 0:
                return False
        return True


@dataclass(frozen=True)
class TokenMarketData:
    """Market context used by the signal gate and risk token checks."""

    token: str
    price: Optional[float] = None
    liquidity: float = 0.0
    volume_24h: float = 0.0
    price_change_24h: float = 0.0   # percent
    volatility: float = 0.0         # percent


@dataclass(frozen=True)
class MACDResult:
    macd_line: List[float]
    signal_line: List[float]
    histogram: List[float]

    @property
    def last_macd(self) -> Optional[float]:
        return self.macd_line[-1] if self.macd_line else None

    @property
    def last_signal(self) -> Optional[float]:
        return self.signal_line[-1] if self.signal_line else None

    @property
    def last_histogram(self) -> Optional[float]:
        return self.histogram[-1] if self.histogram else None

    @property
    def previous_histogram(self) -> Optional[float]:
        return self.histogram[-2] if len(self.histogram) >= 2 else None


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    bandwidth: float = 0.0


@dataclass(frozen=True)
class Level:
    price: float
    kind: str               # "SUPPORT" | "RESISTANCE"
    strength: float         # 0..1
    points: int = 1


@dataclass(frozen=True)
class SupportResistance:
    supports: List[Level] = field(default_factory=list)
    resistances: List[Level] = field(default_factory=list)
    closest_support: Optional[Level] = None
    closest_resistance: Optional[Level] = None


@dataclass(frozen=True)
class TrendAnalysis:
    direction: str          # "UP" | "DOWN" | "NEUTRAL"
    strength: float         # 0..1
    short_slope: float = 0.0
    medium_slope: float = 0.0
    long_slope: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class VolumeProfile:
    volume_ratio: float = 0.0
    trend: str = "NEUTRAL"  # "INCREASING" | "DECREASING" | "NEUTRAL"
    strength: float = 0.0
    price_correlation: float = 0.0
    average_volume: float = 0.0


@dataclass(frozen=True)
class IndicatorSet:
    """Indicator values for one PriceSeries snapshot. Recomputed every cycle."""

    price: float
    rsi: Optional[float] = None
    rsi_values: List[float] = field(default_factory=list)
    macd: Optional[MACDResult] = None
    bollinger: Optional[BollingerBands] = None
    ema_short: Optional[float] = None
    ema_long: Optional[float] = None
    golden_cross: bool = False
    death_cross: bool = False
    relative_volume: Optional[float] = None
    price_change_pct: float = 0.0
    trend: Optional[TrendAnalysis] = None
    volume: Optional[VolumeProfile] = None
    levels: Optional[SupportResistance] = None
    patterns: List[str] = field(default_factory=list)
    extra: Dict[str, float] = field(default_factory=dict)
