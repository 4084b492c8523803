"""Portfolio ledger: capital, reservations, asset balances and performance metrics.

current_capital moves only on settlement (closed positions) and explicit
add/withdraw. Open positions hold a reservation, so
available_capital = current_capital - reserved <= current_capital.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Deque, Dict, List, Optional

from tokentrader.infrastructure.cache.ttl_cache import TTLCache
from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.config import PortfolioConfig
from tokentrader.infrastructure.utils.timeutils import to_iso, utc_now
from tokentrader.models.errors import INSUFFICIENT_CAPITAL, INVALID_AMOUNT, CapitalError
from tokentrader.models.trade_models import Position
from tokentrader.services.risk.risk_firewall import RiskSnapshot


@dataclass
class PortfolioState:
    initial_capital: float
    current_capital: float
    peak_capital: float
    lowest_capital: float
    reserved: float = 0.0
    asset_balances: Dict[str, float] = field(default_factory=dict)

    @property
    def available_capital(self) -> float:
        return self.current_capital - self.reserved


@dataclass
class _Performance:
    trades: int = 0
    wins: int = 0
    losses: int = 0
    break_even: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0          # positive number
    biggest_win: float = 0.0
    biggest_loss: float = 0.0        # most negative profit
    total_holding_sec: float = 0.0
    total_volume: float = 0.0
    total_fees: float = 0.0


@dataclass
class _Daily:
    day: date
    start_capital: float
    trades: int = 0
    profit: float = 0.0
    loss: float = 0.0


class PortfolioLedger:
    _METRICS_KEY = "metrics"

    def __init__(
        self,
        config: Optional[PortfolioConfig] = None,
        *,
        events: Optional[EventBus] = None,
        metrics_cache: Optional[TTLCache] = None,
    ) -> None:
        self.config = config or PortfolioConfig()
        self.events = events
        capital = float(self.config.initial_capital)
        self.state = PortfolioState(
            initial_capital=capital,
            current_capital=capital,
            peak_capital=capital,
            lowest_capital=capital,
        )
        self._reservations: Dict[str, float] = {}
        self._perf = _Performance()
        self._daily = _Daily(day=utc_now().date(), start_capital=capital)
        self._history: Deque[Dict[str, Any]] = deque(maxlen=self.config.history_size)
        ttl = self.config.metrics_cache_ttl_sec
        self._metrics_cache = metrics_cache or TTLCache(default_ttl_sec=ttl if ttl > 0 else 1e-9, max_entries=4)
        self._log = get_logger("portfolio_ledger")

    # ------------------------------------------------------------- capital

    def add_capital(self, amount: float, *, note: str = "deposit") -> PortfolioState:
        amount = float(amount)
        if amount <= 0:
            raise CapitalError("amount must be > 0", code=INVALID_AMOUNT, amount=amount)
        self.state.current_capital += amount
        self._after_capital_change("capital_added", amount=amount, note=note)
        return self.state

    def withdraw_capital(self, amount: float, *, note: str = "withdrawal") -> PortfolioState:
        amount = float(amount)
        if amount <= 0:
            raise CapitalError("amount must be > 0", code=INVALID_AMOUNT, amount=amount)
        if amount > self.state.available_capital:
            raise CapitalError(
                "withdrawal exceeds available capital",
                code=INSUFFICIENT_CAPITAL,
                amount=amount,
                available=self.state.available_capital,
            )
        self.state.current_capital -= amount
        self._after_capital_change("capital_withdrawn", amount=amount, note=note)
        return self.state

    def reserve(self, key: str, value: float, *, force: bool = False) -> float:
        """Set the reservation held under `key` (replaces any previous one).

        `force` skips the availability check for fills that already happened.
        """
        value = float(value)
        if value < 0:
            raise CapitalError("reservation must be >= 0", code=INVALID_AMOUNT, value=value)
        previous = self._reservations.get(key, 0.0)
        delta = value - previous
        if not force and delta > self.state.available_capital + 1e-9:
            raise CapitalError(
                "insufficient available capital",
                code=INSUFFICIENT_CAPITAL,
                requested=value,
                available=self.state.available_capital,
            )
        self._reservations[key] = value
        self.state.reserved += delta
        self._invalidate()
        return self.state.available_capital

    def release(self, key: str) -> float:
        value = self._reservations.pop(key, 0.0)
        self.state.reserved = max(0.0, self.state.reserved - value)
        self._invalidate()
        return value

    def reserved_for(self, key: str) -> float:
        return self._reservations.get(key, 0.0)

    # ------------------------------------------------------------- position hooks

    def record_opened_position(self, position: Position) -> None:
        self.reserve(position.token, position.cost + position.fees, force=True)
        balances = self.state.asset_balances
        balances[position.token] = balances.get(position.token, 0.0) + position.amount
        self._perf.total_volume += position.cost
        self._append_history("position_opened", token=position.token, position_id=position.id, value=position.cost)

    def record_closed_position(self, position: Position) -> None:
        """Settle a closed position: release its reservation, book the profit."""
        self._roll_day()
        profit = float(position.profit or 0.0)
        self.release(position.token)

        balances = self.state.asset_balances
        remaining = balances.get(position.token, 0.0) - position.amount
        if abs(remaining) <= 1e-12:
            balances.pop(position.token, None)
        else:
            balances[position.token] = remaining

        self.state.current_capital += profit
        self._update_watermarks()

        perf = self._perf
        perf.trades += 1
        if profit > 0:
            perf.wins += 1
            perf.gross_profit += profit
            perf.biggest_win = max(perf.biggest_win, profit)
            self._daily.profit += profit
        elif profit < 0:
            perf.losses += 1
            perf.gross_loss += -profit
            perf.biggest_loss = min(perf.biggest_loss, profit)
            self._daily.loss += -profit
        else:
            perf.break_even += 1
        perf.total_holding_sec += float(position.holding_time_sec or 0.0)
        if position.exit_price is not None:
            perf.total_volume += position.exit_price * position.amount
        perf.total_fees += position.fees
        self._daily.trades += 1

        self._append_history(
            "position_closed",
            token=position.token,
            position_id=position.id,
            profit=profit,
            capital=self.state.current_capital,
        )
        self._log.info(
            "portfolio_settled",
            token=position.token,
            profit=round(profit, 8),
            current_capital=round(self.state.current_capital, 8),
            available_capital=round(self.state.available_capital, 8),
        )
        self._publish("portfolio.updated", self.get_state())

    # ------------------------------------------------------------- queries

    def get_state(self) -> Dict[str, Any]:
        s = self.state
        return {
            "initial_capital": s.initial_capital,
            "current_capital": s.current_capital,
            "available_capital": s.available_capital,
            "reserved_capital": s.reserved,
            "peak_capital": s.peak_capital,
            "lowest_capital": s.lowest_capital,
            "asset_balances": dict(s.asset_balances),
            "base_asset": self.config.base_asset,
        }

    def get_risk_snapshot(self, exposure: float = 0.0, open_positions: int = 0) -> RiskSnapshot:
        s = self.state
        return RiskSnapshot(
            current_capital=s.current_capital,
            available_capital=s.available_capital,
            peak_capital=s.peak_capital,
            exposure=float(exposure),
            open_positions=int(open_positions),
        )

    def get_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def get_daily_stats(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        self._roll_day(now)
        d = self._daily
        return {
            "day": d.day.isoformat(),
            "start_capital": d.start_capital,
            "trades": d.trades,
            "profit": d.profit,
            "loss": d.loss,
            "net": d.profit - d.loss,
        }

    def get_metrics(self) -> Dict[str, Any]:
        """Aggregate performance, cached for `metrics_cache_ttl_sec`."""
        cached = self._metrics_cache.get(self._METRICS_KEY)
        if cached is not None:
            return cached
        metrics = self._compute_metrics()
        self._metrics_cache.set(self._METRICS_KEY, metrics)
        return metrics

    def _compute_metrics(self) -> Dict[str, Any]:
        p = self._perf
        s = self.state
        decided = p.wins + p.losses
        # undefined without losses
        profit_factor: Optional[float] = p.gross_profit / p.gross_loss if p.gross_loss > 0 else None
        return {
            "total_trades": p.trades,
            "winning_trades": p.wins,
            "losing_trades": p.losses,
            "break_even_trades": p.break_even,
            "win_rate": p.wins / decided * 100.0 if decided else 0.0,
            "profit_factor": profit_factor,
            "average_win": p.gross_profit / p.wins if p.wins else 0.0,
            "average_loss": -p.gross_loss / p.losses if p.losses else 0.0,
            "biggest_win": p.biggest_win,
            "biggest_loss": p.biggest_loss,
            "net_profit": p.gross_profit - p.gross_loss,
            "return_pct": (s.current_capital - s.initial_capital) / s.initial_capital * 100.0,
            "max_drawdown_pct": (s.peak_capital - s.lowest_capital) / s.peak_capital * 100.0 if s.peak_capital else 0.0,
            "current_drawdown_pct": (
                (s.peak_capital - s.current_capital) / s.peak_capital * 100.0 if s.peak_capital else 0.0
            ),
            "average_holding_time_sec": p.total_holding_sec / p.trades if p.trades else 0.0,
            "total_volume": p.total_volume,
            "total_fees": p.total_fees,
            "asset_balances": dict(s.asset_balances),
            "computed_at": to_iso(utc_now()),
        }

    # ------------------------------------------------------------- maintenance

    def reset_period(self) -> None:
        """Start a new measurement period from the current capital."""
        s = self.state
        s.peak_capital = s.current_capital
        s.lowest_capital = s.current_capital
        self._perf = _Performance()
        self._daily = _Daily(day=utc_now().date(), start_capital=s.current_capital)
        self._invalidate()
        self._append_history("period_reset", capital=s.current_capital)
        self._log.info("portfolio_period_reset", capital=s.current_capital)

    def _roll_day(self, now: Optional[datetime] = None) -> None:
        today = (now or utc_now()).date()
        if today != self._daily.day:
            self._log.info("portfolio_daily_rollover", previous_day=self._daily.day.isoformat(), trades=self._daily.trades)
            self._daily = _Daily(day=today, start_capital=self.state.current_capital)

    def _update_watermarks(self) -> None:
        s = self.state
        s.peak_capital = max(s.peak_capital, s.current_capital)
        s.lowest_capital = min(s.lowest_capital, s.current_capital)

    def _after_capital_change(self, kind: str, **data: Any) -> None:
        self._update_watermarks()
        self._append_history(kind, capital=self.state.current_capital, **data)
        self._log.info(kind, current_capital=self.state.current_capital, **data)
        self._publish("portfolio.updated", self.get_state())

    def _append_history(self, kind: str, **data: Any) -> None:
        self._history.append({"type": kind, "timestamp": to_iso(utc_now()), **data})
        self._invalidate()

    def _invalidate(self) -> None:
        self._metrics_cache.delete(self._METRICS_KEY)

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
