"""Risk manager: trade gating, position sizing, daily statistics, market state."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, fields, replace
from datetime import date, datetime
from typing import Any, Dict, Optional

from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.config import MARKET_STATES, SIZING_MODES, RiskConfig
from tokentrader.infrastructure.utils.timeutils import utc_now
from tokentrader.models.errors import (
    INSUFFICIENT_LIQUIDITY,
    MARKET_DATA_UNAVAILABLE,
    SIGNAL_CONFIDENCE_TOO_LOW,
    VOLATILITY_TOO_HIGH,
)
from tokentrader.models.market_models import TokenMarketData
from tokentrader.models.trade_models import Signal
from tokentrader.services.risk.position_sizer import PositionSizer, SizeDecision
from tokentrader.services.risk.risk_firewall import ALLOWED, RiskDecision, RiskFirewall, RiskSnapshot


@dataclass(frozen=True)
class RiskParameters:
    """Immutable risk limits. Percentages, 5 = 5%."""

    max_drawdown_pct: float
    max_daily_loss_pct: float
    max_exposure_pct: float
    base_trade_size_pct: float
    max_position_size_pct: float
    sizing_mode: str

    @classmethod
    def from_config(cls, cfg: RiskConfig) -> "RiskParameters":
        return cls(
            max_drawdown_pct=cfg.max_drawdown_pct,
            max_daily_loss_pct=cfg.max_daily_loss_pct,
            max_exposure_pct=cfg.max_exposure_pct,
            base_trade_size_pct=cfg.base_trade_size_pct,
            max_position_size_pct=cfg.max_position_size_pct,
            sizing_mode=cfg.sizing_mode,
        )


@dataclass
class DailyStats:
    day: date
    trades: int = 0
    profit: float = 0.0     # sum of winning trades
    loss: float = 0.0       # sum of losing trades (positive number)
    current_exposure: float = 0.0
    peak_exposure: float = 0.0
    start_capital: float = 0.0

    @property
    def net(self) -> float:
        return self.profit - self.loss


@dataclass(frozen=True)
class StopLevels:
    stop_loss_pct: float
    take_profit_pct: float
    stop_loss_price: float
    take_profit_price: float
    risk_reward_ratio: float


class RiskManager:
    def __init__(self, config: Optional[RiskConfig] = None, *, events: Optional[EventBus] = None) -> None:
        self.config = config or RiskConfig()
        self.events = events
        self._baseline = RiskParameters.from_config(self.config)
        self._params = self._baseline
        self.market_state = "NORMAL"
        self.consecutive_losses = 0
        self.daily = DailyStats(day=utc_now().date())
        self._reset_task: Optional[asyncio.Task] = None
        self._log = get_logger("risk_manager")

    # ------------------------------------------------------------- parameters

    @property
    def parameters(self) -> RiskParameters:
        return self._params

    def update_parameters(self, **values: Any) -> RiskParameters:
        """Return and install a new parameter snapshot. Also becomes the NORMAL baseline."""
        unknown = set(values) - {f.name for f in fields(RiskParameters)}
        if unknown:
            raise ValueError(f"unknown risk parameter(s): {sorted(unknown)}")
        mode = values.get("sizing_mode")
        if mode is not None and mode not in SIZING_MODES:
            raise ValueError(f"sizing_mode must be one of: {list(SIZING_MODES)}")
        for key, v in values.items():
            if key != "sizing_mode" and (not isinstance(v, (int, float)) or v <= 0):
                raise ValueError(f"{key} must be a positive number")
        self._baseline = replace(self._baseline, **values)
        self._params = self._apply_state(self._baseline, self.market_state)
        self._log.info("risk_parameters_updated", **asdict(self._params))
        return self._params

    def set_market_state(self, state: str) -> RiskParameters:
        """Overwrite exposure / trade size from the state preset. Idempotent."""
        state = str(state).upper()
        if state not in MARKET_STATES:
            raise ValueError(f"market state must be one of: {list(MARKET_STATES)}")
        previous = self.market_state
        self.market_state = state
        self._params = self._apply_state(self._baseline, state)
        if previous != state:
            self._log.info("market_state_changed", previous=previous, state=state)
            self._publish("risk.market_state_changed", {"previous": previous, "state": state})
        return self._params

    def _apply_state(self, base: RiskParameters, state: str) -> RiskParameters:
        preset = self.config.market_states.get(state)
        if preset is None:
            return base
        changes: Dict[str, float] = {}
        if preset.max_exposure_pct is not None:
            changes["max_exposure_pct"] = preset.max_exposure_pct
        if preset.base_trade_size_pct is not None:
            changes["base_trade_size_pct"] = min(preset.base_trade_size_pct, base.max_position_size_pct)
        return replace(base, **changes) if changes else base

    def _sizer(self) -> PositionSizer:
        p = self._params
        return PositionSizer(
            base_trade_size_pct=p.base_trade_size_pct,
            max_position_size_pct=p.max_position_size_pct,
            stop_loss_pct=self.config.stop_loss_pct,
            take_profit_pct=self.config.take_profit_pct,
            max_volatility=self.config.max_volatility,
            volatility_multiplier=self.config.volatility_multiplier,
            adaptive_capital_threshold=self.config.adaptive_capital_threshold,
        )

    def _firewall(self) -> RiskFirewall:
        p = self._params
        return RiskFirewall(
            max_daily_loss_pct=p.max_daily_loss_pct,
            max_drawdown_pct=p.max_drawdown_pct,
            max_exposure_pct=p.max_exposure_pct,
            max_consecutive_losses=self.config.max_consecutive_losses,
        )

    # ------------------------------------------------------------- gating

    def can_trade(
        self,
        portfolio: RiskSnapshot,
        token: Optional[TokenMarketData] = None,
        signal: Optional[Signal] = None,
    ) -> RiskDecision:
        """Account limits first, then token gates. The first failing check is returned."""
        self.check_daily_reset(portfolio.current_capital)

        decision = self._firewall().check(
            portfolio,
            daily_pnl=self.daily.net,
            day_start_capital=self.daily.start_capital,
            consecutive_losses=self.consecutive_losses,
        )
        if decision.allowed:
            decision = self._check_token(token, signal)

        if not decision.allowed:
            self._log.info(
                "risk_rejected",
                reason=decision.reason,
                token=token.token if token else None,
                **decision.details,
            )
            self._publish(
                "risk.rejected",
                {"reason": decision.reason, "token": token.token if token else None, **decision.details},
            )
        return decision

    def _check_token(self, token: Optional[TokenMarketData], signal: Optional[Signal]) -> RiskDecision:
        cfg = self.config
        if token is not None:
            if token.price is None or token.price <= 0:
                return RiskDecision(False, MARKET_DATA_UNAVAILABLE, {"token": token.token})
            if token.liquidity < cfg.min_liquidity:
                return RiskDecision(
                    False, INSUFFICIENT_LIQUIDITY, {"liquidity": token.liquidity, "limit": cfg.min_liquidity}
                )
            if token.volatility > cfg.max_token_volatility:
                return RiskDecision(
                    False, VOLATILITY_TOO_HIGH, {"volatility": token.volatility, "limit": cfg.max_token_volatility}
                )
        if signal is not None and signal.confidence < cfg.min_confidence:
            return RiskDecision(
                False, SIGNAL_CONFIDENCE_TOO_LOW, {"confidence": signal.confidence, "limit": cfg.min_confidence}
            )
        return ALLOWED

    def calculate_position_size(
        self,
        price: Optional[float],
        portfolio: RiskSnapshot,
        token: Optional[TokenMarketData] = None,
        signal: Optional[Signal] = None,
    ) -> SizeDecision:
        self.check_daily_reset(portfolio.current_capital)
        decision = self._sizer().compute(
            mode=self._params.sizing_mode,
            price=price,
            capital=portfolio.current_capital,
            available=portfolio.available_capital,
            confidence=signal.confidence if signal is not None else None,
            volatility=token.volatility if token is not None else 0.0,
        )
        self._log.debug(
            "position_sized",
            mode=decision.mode,
            allowed=decision.allowed,
            value=round(decision.value, 6),
            amount=decision.amount,
            reason=decision.reason,
        )
        return decision

    def validate_trade(
        self,
        price: Optional[float],
        portfolio: RiskSnapshot,
        token: Optional[TokenMarketData] = None,
        signal: Optional[Signal] = None,
    ) -> SizeDecision:
        """can_trade + sizing in one call. A rejection comes back as a disallowed size."""
        decision = self.can_trade(portfolio, token, signal)
        if not decision.allowed:
            return SizeDecision(False, 0.0, 0.0, 0.0, self._params.sizing_mode, decision.reason)
        return self.calculate_position_size(price, portfolio, token, signal)

    def calculate_stop_levels(
        self, entry_price: float, volatility_pct: Optional[float] = None, direction: str = "BUY"
    ) -> StopLevels:
        """Stops from the configured percentages, widened or tightened by volatility (0.5x..2x)."""
        if entry_price <= 0:
            raise ValueError("entry_price must be > 0")
        factor = 1.0
        if volatility_pct is not None:
            factor = max(0.5, min(2.0, float(volatility_pct) / 10.0))
        sl_pct = self.config.stop_loss_pct * factor
        tp_pct = self.config.take_profit_pct * factor
        if direction == "BUY":
            sl_price = entry_price * (1 - sl_pct / 100.0)
            tp_price = entry_price * (1 + tp_pct / 100.0)
        else:
            sl_price = entry_price * (1 + sl_pct / 100.0)
            tp_price = entry_price * (1 - tp_pct / 100.0)
        return StopLevels(sl_pct, tp_pct, sl_price, tp_price, tp_pct / sl_pct)

    # ------------------------------------------------------------- daily stats

    def register_trade(self, token: str, value: float) -> None:
        self.check_daily_reset()
        self.daily.trades += 1
        self.daily.current_exposure += float(value)
        self.daily.peak_exposure = max(self.daily.peak_exposure, self.daily.current_exposure)
        self._log.info("trade_registered", token=token, value=value, trades_today=self.daily.trades)

    def update_trade_outcome(self, profit: float, *, released_value: float = 0.0) -> None:
        self.check_daily_reset()
        profit = float(profit)
        if profit >= 0:
            self.daily.profit += profit
        else:
            self.daily.loss += -profit
        self.consecutive_losses = self.consecutive_losses + 1 if profit < 0 else 0
        self.daily.current_exposure = max(0.0, self.daily.current_exposure - float(released_value))

    def check_daily_reset(self, capital: Optional[float] = None, *, now: Optional[datetime] = None) -> bool:
        """Roll daily stats on a new UTC day. Returns True when a reset happened."""
        today = (now or utc_now()).date()
        if today == self.daily.day:
            if self.daily.start_capital <= 0 and capital is not None:
                self.daily.start_capital = float(capital)
            return False

        previous = self.daily
        self.daily = DailyStats(
            day=today,
            current_exposure=previous.current_exposure,
            peak_exposure=previous.current_exposure,
            start_capital=float(capital) if capital is not None else previous.start_capital + previous.net,
        )
        self._log.info("daily_stats_reset", previous_day=previous.day.isoformat(), trades=previous.trades, net=previous.net)
        self._publish("risk.daily_reset", {"day": today.isoformat(), "previous_net": previous.net})
        return True

    async def start(self) -> None:
        if self._reset_task is None or self._reset_task.done():
            self._reset_task = asyncio.create_task(self._daily_reset_loop())

    async def stop(self) -> None:
        task, self._reset_task = self._reset_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _daily_reset_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.daily_reset_check_sec)
            self.check_daily_reset()

    # ------------------------------------------------------------- reporting

    def get_status(self) -> Dict[str, Any]:
        return {
            "parameters": asdict(self._params),
            "market_state": self.market_state,
            "consecutive_losses": self.consecutive_losses,
            "daily": {
                "day": self.daily.day.isoformat(),
                "trades": self.daily.trades,
                "profit": self.daily.profit,
                "loss": self.daily.loss,
                "net": self.daily.net,
                "current_exposure": self.daily.current_exposure,
                "peak_exposure": self.daily.peak_exposure,
                "start_capital": self.daily.start_capital,
            },
        }

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
