"""Trade domain models: signals, orders, fills, positions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from tokentrader.infrastructure.utils.timeutils import to_iso, utc_now


BUY = "BUY"
SELL = "SELL"
NONE = "NONE"


@dataclass(frozen=True)
class Signal:
    token: str
    type: str                       # "BUY" | "SELL" | "NONE"
    confidence: float               # summed weights, BUY/SELL once >= threshold
    strength: str = "WEAK"          # "WEAK" | "MEDIUM" | "STRONG"
    reasons: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    price: Optional[float] = None

    @property
    def is_actionable(self) -> bool:
        return self.type != NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "type": self.type,
            "confidence": self.confidence,
            "strength": self.strength,
            "reasons": list(self.reasons),
            "created_at": to_iso(self.created_at),
            "price": self.price,
        }


@dataclass
class Order:
    """Internal to the execution queue; mutated only by the worker that owns it."""

    id: str
    type: str                       # "BUY" | "SELL"
    token: str
    amount: float
    limit_price: float              # max price for BUY, min price for SELL
    priority: str = "normal"        # "high" | "normal"
    status: str = "QUEUED"          # QUEUED | PROCESSING | COMPLETED | FAILED | CANCELLED
    attempts: int = 0
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancel_requested: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "token": self.token,
            "amount": self.amount,
            "limit_price": self.limit_price,
            "priority": self.priority,
            "status": self.status,
            "attempts": self.attempts,
            "created_at": to_iso(self.created_at),
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "cancel_requested": self.cancel_requested,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass(frozen=True)
class Fill:
    order_id: str
    type: str
    token: str
    amount: float
    requested_price: float
    executed_price: float
    slippage_percent: float
    fee: float
    timestamp: datetime
    reference_id: str
    attempts: int = 1
    execution_time_sec: float = 0.0

    @property
    def value(self) -> float:
        return self.executed_price * self.amount

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = to_iso(self.timestamp)
        d["status"] = "COMPLETED"
        return d


@dataclass
class Position:
    id: str
    token: str
    entry_price: float
    amount: float
    stop_loss: float
    take_profit: float
    opened_at: datetime = field(default_factory=utc_now)
    status: str = "OPEN"            # "OPEN" | "CLOSED"
    signal: Optional[Signal] = None
    trades: List[Fill] = field(default_factory=list)
    current_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0

    exit_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None
    profit: Optional[float] = None
    profit_percentage: Optional[float] = None
    fees: float = 0.0
    holding_time_sec: Optional[float] = None

    @property
    def cost(self) -> float:
        return self.entry_price * self.amount

    def value_at(self, price: Optional[float] = None) -> float:
        p = price if price is not None else (self.current_price or self.entry_price)
        return p * self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "token": self.token,
            "entry_price": self.entry_price,
            "amount": self.amount,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "opened_at": to_iso(self.opened_at),
            "status": self.status,
            "signal": self.signal.to_dict() if self.signal else None,
            "trades": [t.to_dict() for t in self.trades],
            "current_price": self.current_price,
            "unrealized_pnl": self.unrealized_pnl,
            "unrealized_pnl_pct": self.unrealized_pnl_pct,
            "exit_price": self.exit_price,
            "closed_at": to_iso(self.closed_at),
            "close_reason": self.close_reason,
            "profit": self.profit,
            "profit_percentage": self.profit_percentage,
            "fees": self.fees,
            "holding_time_sec": self.holding_time_sec,
        }

    def to_trade_record(self) -> Dict[str, Any]:
        """One JSON record per closed trade, as written to the trade journal."""
        return {
            "token": self.token,
            "position_id": self.id,
            "opened_at": to_iso(self.opened_at),
            "closed_at": to_iso(self.closed_at),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "amount": self.amount,
            "profit": self.profit,
            "profit_percentage": self.profit_percentage,
            "fees": self.fees,
            "close_reason": self.close_reason,
            "holding_time_sec": self.holding_time_sec,
            "signal": self.signal.to_dict() if self.signal else None,
        }
