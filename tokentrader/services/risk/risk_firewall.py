"""Account-level risk limits, checked in a fixed order."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from tokentrader.models.errors import (
    MAX_CONSECUTIVE_LOSSES,
    MAX_DAILY_LOSS_EXCEEDED,
    MAX_DRAWDOWN_EXCEEDED,
    MAX_EXPOSURE_EXCEEDED,
    NO_CAPITAL,
)


@dataclass(frozen=True)
class RiskSnapshot:
    current_capital: float
    available_capital: float
    peak_capital: float
    exposure: float = 0.0
    open_positions: int = 0


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)


ALLOWED = RiskDecision(True, "ok")


class RiskFirewall:
    """Daily loss -> drawdown -> exposure -> losing streak. First failure wins."""

    def __init__(
        self,
        *,
        max_daily_loss_pct: float,
        max_drawdown_pct: float,
        max_exposure_pct: float,
        max_consecutive_losses: int,
    ) -> None:
        self.max_daily_loss_pct = float(max_daily_loss_pct)
        self.max_drawdown_pct = float(max_drawdown_pct)
        self.max_exposure_pct = float(max_exposure_pct)
        self.max_consecutive_losses = int(max_consecutive_losses)

    def check(
        self,
        snapshot: RiskSnapshot,
        *,
        daily_pnl: float,
        day_start_capital: float,
        consecutive_losses: int = 0,
    ) -> RiskDecision:
        if snapshot.current_capital <= 0 or snapshot.available_capital <= 0:
            return RiskDecision(False, NO_CAPITAL, {"available": snapshot.available_capital})

        base = day_start_capital if day_start_capital > 0 else snapshot.current_capital
        daily_loss_pct = max(0.0, -daily_pnl) / base * 100.0
        if daily_loss_pct >= self.max_daily_loss_pct:
            return RiskDecision(
                False, MAX_DAILY_LOSS_EXCEEDED, {"loss_pct": daily_loss_pct, "limit": self.max_daily_loss_pct}
            )

        peak = max(snapshot.peak_capital, snapshot.current_capital)
        drawdown_pct = (peak - snapshot.current_capital) / peak * 100.0
        if drawdown_pct >= self.max_drawdown_pct:
            return RiskDecision(
                False, MAX_DRAWDOWN_EXCEEDED, {"drawdown_pct": drawdown_pct, "limit": self.max_drawdown_pct}
            )

        exposure_pct = snapshot.exposure / snapshot.current_capital * 100.0
        if exposure_pct >= self.max_exposure_pct:
            return RiskDecision(
                False, MAX_EXPOSURE_EXCEEDED, {"exposure_pct": exposure_pct, "limit": self.max_exposure_pct}
            )

        if consecutive_losses >= self.max_consecutive_losses:
            return RiskDecision(
                False, MAX_CONSECUTIVE_LOSSES, {"losses": consecutive_losses, "limit": self.max_consecutive_losses}
            )

        return ALLOWED
