"""Momentum strategy: weighted indicator votes -> BUY / SELL / NONE signal."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional

from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.config import StrategyConfig
from tokentrader.infrastructure.utils.timeutils import utc_now
from tokentrader.models.market_models import IndicatorSet, PriceSeries, TokenMarketData
from tokentrader.models.trade_models import BUY, NONE, SELL, Signal
from tokentrader.services.market.indicator_engine import IndicatorEngine
from tokentrader.services.market.indicators import percent_change
from tokentrader.services.market.patterns import (
    BEARISH_BREAKOUT,
    BULLISH_BREAKOUT,
    DOUBLE_BOTTOM,
    DOUBLE_TOP,
    check_divergence,
)
from tokentrader.services.strategy.signal_history import SignalHistory


INVALID_INPUT_DATA = "INVALID_INPUT_DATA"
MARKET_CONDITIONS_NOT_MET = "MARKET_CONDITIONS_NOT_MET"
ANALYSIS_ERROR = "ANALYSIS_ERROR"
CONTRARY_PENALTY_REASON = "CONFIDENCE_REDUCED_DUE_TO_RECENT_CONTRARY_SIGNAL"
AGREEMENT_BOOST_REASON = "CONFIDENCE_BOOSTED_BY_SIGNAL_CONSISTENCY"

_PATTERN_VOTES = {
    DOUBLE_BOTTOM: (BUY, 0.7),
    DOUBLE_TOP: (SELL, 0.7),
    BULLISH_BREAKOUT: (BUY, 0.65),
    BEARISH_BREAKOUT: (SELL, 0.65),
}


@dataclass(frozen=True)
class Vote:
    side: str               # "BUY" | "SELL" | "NONE"
    weight: float
    reason: str


def signal_strength(confidence: float) -> str:
    if confidence >= 0.8:
        return "STRONG"
    if confidence >= 0.6:
        return "MEDIUM"
    return "WEAK"


class MomentumStrategy:
    """
    Sums weighted votes per side:
    - RSI extremes, MACD histogram turns, Bollinger position
    - regression trend, volume profile, support/resistance proximity
    - 24h momentum, price/RSI divergence, close-price patterns
    The larger side wins if it reaches `min_confidence`. The total is not capped.
    """

    PRICE_TREND_WEIGHT = 0.3
    VOLUME_TREND_WEIGHT = 0.2

    def __init__(
        self,
        *,
        config: Optional[StrategyConfig] = None,
        engine: Optional[IndicatorEngine] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.config = config or StrategyConfig()
        self.engine = engine or IndicatorEngine()
        self.events = events
        self.history = SignalHistory(max_size=self.config.history_size)
        self._last_signal: Dict[str, Signal] = {}
        self._log = get_logger("momentum_strategy")

    # ------------------------------------------------------------------ public

    def generate_signal(
        self,
        series: PriceSeries,
        market: Optional[TokenMarketData],
        *,
        now: Optional[datetime] = None,
    ) -> Signal:
        now = now or utc_now()
        token = series.token

        if not token or not series.is_valid(self.config.min_data_points):
            return self._none(token, [INVALID_INPUT_DATA], now)

        if not self.market_conditions_ok(market):
            return self._none(token, [MARKET_CONDITIONS_NOT_MET], now, price=series.last_price)

        try:
            ind = self.engine.compute(series)
        except (ValueError, ZeroDivisionError, IndexError) as e:
            self._log.error("analysis_error", token=token, error=str(e))
            return self._none(token, [ANALYSIS_ERROR], now, price=series.last_price)

        assert market is not None
        raw = self.score(token, series.prices, ind, market, now=now)
        signal = self.apply_persistence_filter(raw, now=now)
        self.history.track(signal)

        self._log.info(
            "signal_generated",
            token=token,
            type=signal.type,
            confidence=round(signal.confidence, 4),
            strength=signal.strength,
            reasons=signal.reasons,
        )
        if self.events is not None:
            self.events.publish("signal.generated", signal.to_dict())
        return signal

    def market_conditions_ok(self, market: Optional[TokenMarketData]) -> bool:
        if market is None:
            return False
        cfg = self.config
        if market.liquidity < cfg.min_liquidity or market.volume_24h < cfg.min_volume_24h:
            return False
        return abs(market.price_change_24h) <= cfg.max_price_change_24h

    def score(
        self,
        token: str,
        prices: List[float],
        ind: IndicatorSet,
        market: TokenMarketData,
        *,
        now: Optional[datetime] = None,
    ) -> Signal:
        """Collect the votes and pick a side. No persistence filter here."""
        votes = self._votes(prices, ind, market)
        buys = [v for v in votes if v.side == BUY]
        sells = [v for v in votes if v.side == SELL]
        neutral = [v for v in votes if v.side == NONE]

        buy_conf = sum(v.weight for v in buys)
        sell_conf = sum(v.weight for v in sells)
        threshold = self.config.min_confidence

        if buy_conf > sell_conf and buy_conf >= threshold:
            kind, confidence, reasons = BUY, buy_conf, [v.reason for v in buys]
        elif sell_conf > buy_conf and sell_conf >= threshold:
            kind, confidence, reasons = SELL, sell_conf, [v.reason for v in sells]
        else:
            kind = NONE
            reasons = [v.reason for v in neutral]
            if buy_conf > sell_conf:
                reasons.insert(0, "WEAK_BUY_SIGNAL")
                confidence = buy_conf
            elif sell_conf > buy_conf:
                reasons.insert(0, "WEAK_SELL_SIGNAL")
                confidence = sell_conf
            else:
                reasons.insert(0, "NO_CLEAR_SIGNAL")
                confidence = buy_conf

        return Signal(
            token=token,
            type=kind,
            confidence=confidence,
            strength=signal_strength(confidence),
            reasons=reasons,
            created_at=now or utc_now(),
            price=ind.price,
        )

    def apply_persistence_filter(self, signal: Signal, *, now: Optional[datetime] = None) -> Signal:
        """Dampen flip-flops against a recent strong signal, reward agreement.

        Only actionable signals are remembered.
        """
        now = now or signal.created_at
        cfg = self.config
        previous = self._last_signal.get(signal.token)

        if previous is not None and signal.is_actionable:
            age = (now - previous.created_at).total_seconds()
            if age < cfg.persistence_window_sec:
                if previous.confidence >= cfg.persistence_min_confidence and previous.type != signal.type:
                    conf = signal.confidence * cfg.contrary_penalty
                    signal = replace(
                        signal,
                        confidence=conf,
                        strength=signal_strength(conf),
                        reasons=signal.reasons + [CONTRARY_PENALTY_REASON],
                    )
                elif previous.type == signal.type:
                    conf = min(1.0, signal.confidence * cfg.agreement_boost)
                    signal = replace(
                        signal,
                        confidence=conf,
                        strength=signal_strength(conf),
                        reasons=signal.reasons + [AGREEMENT_BOOST_REASON],
                    )

        if signal.is_actionable:
            self._last_signal[signal.token] = replace(signal, created_at=now)
        return signal

    def update_signal_outcome(self, token: str, outcome: str, profit: Optional[float] = None) -> bool:
        return self.history.update_outcome(token, outcome, profit) is not None

    def get_metrics(self) -> Dict[str, object]:
        return self.history.metrics()

    def last_signal(self, token: str) -> Optional[Signal]:
        return self._last_signal.get(token)

    # ------------------------------------------------------------------ votes

    def _none(self, token: str, reasons: List[str], now: datetime, price: Optional[float] = None) -> Signal:
        return Signal(token=token, type=NONE, confidence=0.0, strength="WEAK", reasons=reasons, created_at=now, price=price)

    def _votes(self, prices: List[float], ind: IndicatorSet, market: TokenMarketData) -> List[Vote]:
        cfg = self.config
        price = ind.price
        trend_dir = ind.trend.direction if ind.trend else "NEUTRAL"
        votes: List[Vote] = []

        # RSI
        if ind.rsi is None:
            votes.append(Vote(NONE, 0.1, "RSI_UNAVAILABLE"))
        elif ind.rsi <= cfg.rsi_oversold:
            votes.append(Vote(BUY, 0.7, f"OVERSOLD_RSI: {ind.rsi:.2f}"))
        elif ind.rsi >= cfg.rsi_overbought:
            votes.append(Vote(SELL, 0.7, f"OVERBOUGHT_RSI: {ind.rsi:.2f}"))
        else:
            votes.append(Vote(NONE, 0.1, f"NEUTRAL_RSI: {ind.rsi:.2f}"))

        votes.append(self._macd_vote(ind, trend_dir))
        votes.append(self._bollinger_vote(ind, price))

        # Trend
        trend = ind.trend
        if trend is not None and trend.direction == "UP" and trend.strength > cfg.trend_threshold:
            votes.append(Vote(BUY, trend.strength * self.PRICE_TREND_WEIGHT, f"STRONG_UPTREND: {trend.reason}"))
        elif trend is not None and trend.direction == "DOWN" and trend.strength > cfg.trend_threshold:
            votes.append(Vote(SELL, trend.strength * self.PRICE_TREND_WEIGHT, f"STRONG_DOWNTREND: {trend.reason}"))
        else:
            votes.append(Vote(NONE, 0.2, "NO_CLEAR_TREND_DIRECTION"))

        # Volume
        vol = ind.volume
        if vol is not None:
            if vol.trend == "INCREASING" and vol.volume_ratio > cfg.volume_threshold:
                weight = vol.strength * self.VOLUME_TREND_WEIGHT
                if trend_dir == "UP":
                    votes.append(Vote(BUY, weight, "INCREASING_VOLUME_WITH_PRICE"))
                elif trend_dir == "DOWN":
                    votes.append(Vote(SELL, weight, "INCREASING_VOLUME_WITH_PRICE_DROP"))
            elif vol.volume_ratio < 0.7:
                votes.append(Vote(NONE, 0.1, "LOW_TRADING_VOLUME"))

        sr = self._support_resistance_vote(ind, price)
        if sr is not None:
            votes.append(sr)

        # 24h momentum
        if market.price_change_24h > cfg.momentum_change_pct:
            votes.append(Vote(BUY, 0.1, "POSITIVE_24H_PRICE_CHANGE"))
        elif market.price_change_24h < -cfg.momentum_change_pct:
            votes.append(Vote(SELL, 0.1, "NEGATIVE_24H_PRICE_CHANGE"))

        div = self._divergence_vote(prices, ind)
        if div is not None:
            votes.append(div)

        if ind.patterns:
            side, weight = _PATTERN_VOTES[ind.patterns[-1]]
            votes.append(Vote(side, weight, f"{ind.patterns[-1]}_PATTERN"))

        return votes

    def _macd_vote(self, ind: IndicatorSet, trend_dir: str) -> Vote:
        macd = ind.macd
        if macd is None or macd.previous_histogram is None or macd.last_histogram is None:
            return Vote(NONE, 0.1, "MACD_UNAVAILABLE")
        prev, last = macd.previous_histogram, macd.last_histogram
        if prev < 0 < last:
            return Vote(BUY, 0.8 if trend_dir == "UP" else 0.6, "MACD_BULLISH_CROSSOVER")
        if prev > 0 > last:
            return Vote(SELL, 0.8 if trend_dir == "DOWN" else 0.6, "MACD_BEARISH_CROSSOVER")
        if last > prev and last > 0:
            return Vote(BUY, 0.4, "MACD_BULLISH_MOMENTUM")
        if last < prev and last < 0:
            return Vote(SELL, 0.4, "MACD_BEARISH_MOMENTUM")
        return Vote(NONE, 0.1, "NEUTRAL_MACD")

    def _bollinger_vote(self, ind: IndicatorSet, price: float) -> Vote:
        bb = ind.bollinger
        if bb is None:
            return Vote(NONE, 0.1, "BOLLINGER_UNAVAILABLE")
        if price < bb.lower:
            return Vote(BUY, 0.6, "PRICE_BELOW_LOWER_BAND")
        if price > bb.upper:
            return Vote(SELL, 0.6, "PRICE_ABOVE_UPPER_BAND")
        half_width = bb.upper - bb.middle
        if half_width > 0:
            if price > bb.middle and (bb.upper - price) / half_width < 0.2:
                return Vote(SELL, 0.3, "PRICE_APPROACHING_UPPER_BAND")
            if price < bb.middle and (price - bb.lower) / half_width < 0.2:
                return Vote(BUY, 0.3, "PRICE_APPROACHING_LOWER_BAND")
        return Vote(NONE, 0.1, "PRICE_WITHIN_BANDS")

    def _support_resistance_vote(self, ind: IndicatorSet, price: float) -> Optional[Vote]:
        levels = ind.levels
        if levels is None or price <= 0:
            return None
        proximity = self.config.sr_proximity_pct / 100.0
        support = levels.closest_support
        if support is not None:
            delta = (price - support.price) / price
            if 0 <= delta < proximity:
                return Vote(BUY, 0.5 * support.strength, "PRICE_AT_SUPPORT")
        resistance = levels.closest_resistance
        if resistance is not None:
            delta = (resistance.price - price) / price
            if 0 <= delta < proximity:
                return Vote(SELL, 0.5 * resistance.strength, "PRICE_AT_RESISTANCE")
        return None

    def _divergence_vote(self, prices: List[float], ind: IndicatorSet) -> Optional[Vote]:
        cfg = self.config
        lookback = cfg.divergence_lookback
        rsi_values = ind.rsi_values
        if len(prices) >= lookback and len(rsi_values) >= lookback:
            change = percent_change(prices[-lookback], prices[-1])
            rsi_delta = rsi_values[-1] - rsi_values[-lookback]
            if change < -cfg.divergence_change_pct and rsi_delta > 0:
                return Vote(BUY, 0.7, "BULLISH_RSI_DIVERGENCE")
            if change > cfg.divergence_change_pct and rsi_delta < 0:
                return Vote(SELL, 0.7, "BEARISH_RSI_DIVERGENCE")

        if len(rsi_values) > 5 and len(prices) > 5:
            kind = check_divergence(prices[-5:], rsi_values[-5:])
            if kind == "BULLISH":
                return Vote(BUY, 0.7, "BULLISH_RSI_DIVERGENCE")
            if kind == "BEARISH":
                return Vote(SELL, 0.7, "BEARISH_RSI_DIVERGENCE")
        return None
