"""Indicator engine: computes a full IndicatorSet for one price series snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tokentrader.infrastructure.utils.config import IndicatorConfig, StrategyConfig
from tokentrader.models.market_models import IndicatorSet, PriceSeries
from tokentrader.services.market import indicators as ta
from tokentrader.services.market.patterns import detect_patterns
from tokentrader.services.market.support_resistance import compute_levels
from tokentrader.services.market.trend import analyze_trend, analyze_volume


@dataclass(frozen=True)
class IndicatorEngine:
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    ema_short: int = 50
    ema_long: int = 200
    volume_sma_period: int = 10

    short_window: int = 10
    medium_window: int = 20
    long_window: int = 50
    trend_threshold: float = 0.3
    volume_lookback: int = 24
    volume_threshold: float = 1.2

    @classmethod
    def from_config(cls, indicators: IndicatorConfig, strategy: Optional[StrategyConfig] = None) -> "IndicatorEngine":
        strategy = strategy or StrategyConfig()
        return cls(
            rsi_period=indicators.rsi_period,
            macd_fast=indicators.macd_fast,
            macd_slow=indicators.macd_slow,
            macd_signal=indicators.macd_signal,
            bollinger_period=indicators.bollinger_period,
            bollinger_std_dev=indicators.bollinger_std_dev,
            ema_short=indicators.ema_short,
            ema_long=indicators.ema_long,
            volume_sma_period=indicators.volume_sma_period,
            short_window=strategy.short_window,
            medium_window=strategy.medium_window,
            long_window=strategy.long_window,
            trend_threshold=strategy.trend_threshold,
            volume_lookback=strategy.volume_lookback,
            volume_threshold=strategy.volume_threshold,
        )

    def _validate_periods(self) -> None:
        for name in ("rsi_period", "macd_fast", "macd_slow", "macd_signal", "bollinger_period", "ema_short", "ema_long"):
            if getattr(self, name) <= 1:
                raise ValueError(f"{name} must be > 1")

    def min_samples(self) -> int:
        """Samples needed before RSI, MACD and Bollinger are all defined."""
        return max(self.rsi_period + 1, max(self.macd_fast, self.macd_slow) + self.macd_signal, self.bollinger_period)

    def is_ready(self, series: PriceSeries) -> bool:
        return len(series) >= self.min_samples()

    def compute(self, series: PriceSeries) -> IndicatorSet:
        self._validate_periods()
        prices = series.prices
        volumes = series.volumes
        if not prices:
            raise ValueError(f"empty price series for {series.token}")

        rsi_values = ta.rsi_series(prices, self.rsi_period)

        ema_s = ta.ema(prices, self.ema_short)
        ema_l = ta.ema(prices, self.ema_long) if len(prices) >= self.ema_long else []
        golden = death = False
        if len(ema_l) >= 2:
            golden = ema_s[-2] <= ema_l[-2] and ema_s[-1] > ema_l[-1]
            death = ema_s[-2] >= ema_l[-2] and ema_s[-1] < ema_l[-1]

        vol_sma = ta.sma(volumes, self.volume_sma_period)
        relative_volume = None
        if vol_sma and vol_sma[-1] > 0:
            relative_volume = volumes[-1] / vol_sma[-1]

        return IndicatorSet(
            price=prices[-1],
            rsi=rsi_values[-1] if rsi_values else None,
            rsi_values=rsi_values,
            macd=ta.macd(prices, self.macd_fast, self.macd_slow, self.macd_signal),
            bollinger=ta.bollinger_bands(prices, self.bollinger_period, self.bollinger_std_dev),
            ema_short=ema_s[-1],
            ema_long=ema_l[-1] if ema_l else None,
            golden_cross=golden,
            death_cross=death,
            relative_volume=relative_volume,
            price_change_pct=ta.percent_change(prices[0], prices[-1]),
            trend=analyze_trend(
                prices,
                short_window=self.short_window,
                medium_window=self.medium_window,
                long_window=self.long_window,
                ema_short_period=self.ema_short,
                ema_long_period=self.ema_long,
                threshold=self.trend_threshold,
            ),
            volume=analyze_volume(volumes, prices, lookback=self.volume_lookback, threshold=self.volume_threshold),
            levels=compute_levels(prices),
            patterns=detect_patterns(prices),
            extra={"volatility_pct": ta.volatility_pct(prices)},
        )
