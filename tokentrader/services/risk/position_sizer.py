"""Position sizing: how much capital goes into one trade."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from tokentrader.models.errors import INVALID_PRICE, NO_CAPITAL


@dataclass(frozen=True)
class SizeDecision:
    allowed: bool
    amount: float           # token units
    value: float            # capital committed
    size_pct: float         # value as % of capital
    mode: str
    reason: str


def kelly_fraction(win_rate: float, take_profit_pct: float, stop_loss_pct: float) -> float:
    """Raw Kelly fraction f = (b*p - (1-p)) / b with b = take_profit / stop_loss."""
    if stop_loss_pct <= 0 or take_profit_pct <= 0:
        return 0.0
    p = max(0.0, min(1.0, float(win_rate)))
    b = take_profit_pct / stop_loss_pct
    return (b * p - (1.0 - p)) / b


class PositionSizer:
    """Compute trade value from capital for one of four modes.

    - fixed:      capital * base%
    - kelly:      capital * clamp(kelly, 0, max%)  (win rate = signal confidence)
    - volatility: fixed * max(0.2, 1 - vol/max_vol * multiplier)
    - adaptive:   fixed scaled down logarithmically above a capital threshold,
                  then by signal confidence

    Every mode is capped at max% of capital and at available capital.
    """

    def __init__(
        self,
        *,
        base_trade_size_pct: float,
        max_position_size_pct: float,
        stop_loss_pct: float = 5.0,
        take_profit_pct: float = 15.0,
        max_volatility: float = 50.0,
        volatility_multiplier: float = 1.0,
        adaptive_capital_threshold: float = 10_000.0,
    ) -> None:
        self.base_pct = float(base_trade_size_pct)
        self.max_pct = float(max_position_size_pct)
        self.stop_loss_pct = float(stop_loss_pct)
        self.take_profit_pct = float(take_profit_pct)
        self.max_volatility = float(max_volatility)
        self.volatility_multiplier = float(volatility_multiplier)
        self.adaptive_threshold = float(adaptive_capital_threshold)

    def fixed_value(self, capital: float) -> float:
        return capital * self.base_pct / 100.0

    def kelly_value(self, capital: float, win_rate: float) -> float:
        f = kelly_fraction(win_rate, self.take_profit_pct, self.stop_loss_pct)
        f = max(0.0, min(self.max_pct / 100.0, f))
        return capital * f

    def volatility_value(self, capital: float, volatility: float) -> float:
        factor = 1.0 - (float(volatility) / self.max_volatility) * self.volatility_multiplier
        return self.fixed_value(capital) * max(0.2, factor)

    def adaptive_value(self, capital: float, confidence: Optional[float]) -> float:
        value = self.fixed_value(capital)
        if capital > self.adaptive_threshold:
            value /= 1.0 + math.log(capital / self.adaptive_threshold)
        if confidence is not None:
            value *= max(0.0, min(1.0, float(confidence)))
        return value

    def compute(
        self,
        *,
        mode: str,
        price: Optional[float],
        capital: float,
        available: float,
        confidence: Optional[float] = None,
        volatility: float = 0.0,
    ) -> SizeDecision:
        if price is None or price <= 0:
            return SizeDecision(False, 0.0, 0.0, 0.0, mode, INVALID_PRICE)
        capital = float(capital)
        if capital <= 0 or available <= 0:
            return SizeDecision(False, 0.0, 0.0, 0.0, mode, NO_CAPITAL)

        if mode == "fixed":
            value = self.fixed_value(capital)
        elif mode == "kelly":
            value = self.kelly_value(capital, 0.5 if confidence is None else confidence)
        elif mode == "volatility":
            value = self.volatility_value(capital, volatility)
        elif mode == "adaptive":
            value = self.adaptive_value(capital, confidence)
        else:
            raise ValueError(f"unknown sizing mode: {mode}")

        value = min(value, capital * self.max_pct / 100.0, float(available))
        if value <= 0:
            return SizeDecision(False, 0.0, 0.0, 0.0, mode, f"size_zero mode={mode}")

        return SizeDecision(True, value / price, value, value / capital * 100.0, mode, "ok")
