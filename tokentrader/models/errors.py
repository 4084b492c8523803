"""Errors and stable reason codes shared by the pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


# Risk / sizing
MAX_DAILY_LOSS_EXCEEDED = "MAX_DAILY_LOSS_EXCEEDED"
MAX_DRAWDOWN_EXCEEDED = "MAX_DRAWDOWN_EXCEEDED"
MAX_EXPOSURE_EXCEEDED = "MAX_EXPOSURE_EXCEEDED"
MAX_CONSECUTIVE_LOSSES = "MAX_CONSECUTIVE_LOSSES"
INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
VOLATILITY_TOO_HIGH = "VOLATILITY_TOO_HIGH"
SIGNAL_CONFIDENCE_TOO_LOW = "SIGNAL_CONFIDENCE_TOO_LOW"
NO_CAPITAL = "NO_CAPITAL"
INSUFFICIENT_CAPITAL = "INSUFFICIENT_CAPITAL"
INVALID_PRICE = "INVALID_PRICE"
INVALID_AMOUNT = "INVALID_AMOUNT"

# Market data
MARKET_DATA_UNAVAILABLE = "MARKET_DATA_UNAVAILABLE"

# Execution
INVALID_ORDER = "INVALID_ORDER"
PRICE_OUTSIDE_TOLERANCE = "PRICE_OUTSIDE_TOLERANCE"
ORDER_TIMEOUT = "ORDER_TIMEOUT"
EXECUTION_FAILED = "EXECUTION_FAILED"
ORDER_CANCELLED = "ORDER_CANCELLED"
QUEUE_SHUTDOWN = "QUEUE_SHUTDOWN"

# Positions
POSITION_ALREADY_OPEN = "POSITION_ALREADY_OPEN"
MAX_POSITIONS_REACHED = "MAX_POSITIONS_REACHED"
POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
CLOSE_IN_PROGRESS = "CLOSE_IN_PROGRESS"

# Orchestration
CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"

_CLASSES = {
    NO_CAPITAL: "NO_CAPITAL",
    INSUFFICIENT_CAPITAL: "NO_CAPITAL",
    MAX_DAILY_LOSS_EXCEEDED: "RISK_LIMIT",
    MAX_DRAWDOWN_EXCEEDED: "RISK_LIMIT",
    MAX_EXPOSURE_EXCEEDED: "RISK_LIMIT",
    MAX_CONSECUTIVE_LOSSES: "RISK_LIMIT",
    INSUFFICIENT_LIQUIDITY: "RISK_LIMIT",
    VOLATILITY_TOO_HIGH: "RISK_LIMIT",
    SIGNAL_CONFIDENCE_TOO_LOW: "RISK_LIMIT",
    MAX_POSITIONS_REACHED: "RISK_LIMIT",
    POSITION_ALREADY_OPEN: "RISK_LIMIT",
    CLOSE_IN_PROGRESS: "INPUT",
    POSITION_NOT_FOUND: "INPUT",
    CIRCUIT_BREAKER_OPEN: "RISK_LIMIT",
    MARKET_DATA_UNAVAILABLE: "MARKET_DATA_UNAVAILABLE",
    INVALID_PRICE: "MARKET_DATA_UNAVAILABLE",
    PRICE_OUTSIDE_TOLERANCE: "VALIDATION",
    ORDER_TIMEOUT: "VALIDATION",
    INVALID_ORDER: "INPUT",
    INVALID_AMOUNT: "INPUT",
    EXECUTION_FAILED: "EXECUTION",
    ORDER_CANCELLED: "CANCELLED",
    QUEUE_SHUTDOWN: "CANCELLED",
}


def reason_class(code: str) -> str:
    """Failure class for a reason code ("NO_CAPITAL", "RISK_LIMIT", ...)."""
    return _CLASSES.get(code, "OTHER")


class TradingError(RuntimeError):
    """Base error carrying a stable reason code."""

    default_code = "TRADING_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.details: Dict[str, Any] = details

    @property
    def reason_class(self) -> str:
        return reason_class(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "details": dict(self.details)}


class InvalidOrderError(TradingError, ValueError):
    """Bad input (token, amount, price). Raised synchronously, never queued."""

    default_code = INVALID_ORDER


class ValidationAbort(TradingError):
    """Pre-execution validation failed. Never retried."""

    default_code = PRICE_OUTSIDE_TOLERANCE


class ExecutionFailure(TradingError):
    """Executor kept failing until the attempt budget ran out."""

    default_code = EXECUTION_FAILED


class OrderCancelledError(TradingError):
    default_code = ORDER_CANCELLED


class PositionError(TradingError):
    default_code = POSITION_NOT_FOUND


class CapitalError(TradingError, ValueError):
    default_code = INSUFFICIENT_CAPITAL
