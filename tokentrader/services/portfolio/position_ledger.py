"""Position ledger: open-position lifecycle, SL/TP sweep, exposure."""

from __future__ import annotations

import asyncio
import math
import secrets
from collections import deque
from functools import partial
from typing import Any, Deque, Dict, List, Optional, Set

from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.storage.trade_journal import TradeJournal
from tokentrader.infrastructure.utils.config import PositionConfig
from tokentrader.infrastructure.utils.timeutils import now_ms, seconds_since, utc_now
from tokentrader.models.errors import (
    CLOSE_IN_PROGRESS,
    MAX_POSITIONS_REACHED,
    POSITION_ALREADY_OPEN,
    InvalidOrderError,
    PositionError,
    TradingError,
)
from tokentrader.models.trade_models import Fill, Position, Signal
from tokentrader.services.execution.execution_queue import ExecutionQueue
from tokentrader.services.portfolio.portfolio_ledger import PortfolioLedger


STOP_LOSS = "STOP_LOSS"
TAKE_PROFIT = "TAKE_PROFIT"
MANUAL = "MANUAL"


class PositionLedger:
    """At most one OPEN position per token, at most `max_open_positions` overall.

    A token is reserved synchronously before the buy is submitted, so two
    concurrent opens for the same token cannot both pass the checks.
    """

    def __init__(
        self,
        config: Optional[PositionConfig] = None,
        *,
        queue: ExecutionQueue,
        portfolio: PortfolioLedger,
        journal: Optional[TradeJournal] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.config = config or PositionConfig()
        self.queue = queue
        self.portfolio = portfolio
        self.journal = journal
        self.events = events

        self._open: Dict[str, Position] = {}
        self._opening: Set[str] = set()
        self._closing: Set[str] = set()
        self._closed: Deque[Position] = deque(maxlen=self.config.closed_history_size)

        self.total_closed = 0
        self.wins = 0
        self.losses = 0
        self.break_even = 0
        self.avg_holding_time_sec = 0.0
        self._log = get_logger("position_ledger")

    # ------------------------------------------------------------- open / close

    async def open_position(
        self,
        token: str,
        amount: float,
        price: float,
        *,
        signal: Optional[Signal] = None,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> Position:
        """Buy `amount` of `token` with `price` as the max price. Rejected, never queued,
        when the token already has a position or the position limit is reached.

        The token stays reserved until the buy settles, even if the caller is cancelled.
        """
        for name, value in (("amount", amount), ("price", price)):
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise InvalidOrderError(f"{name} must be > 0", **{name: value})

        if token in self._open or token in self._opening:
            raise PositionError(f"position already open for {token}", code=POSITION_ALREADY_OPEN, token=token)
        if len(self._open) + len(self._opening) >= self.config.max_open_positions:
            raise PositionError(
                "max open positions reached",
                code=MAX_POSITIONS_REACHED,
                limit=self.config.max_open_positions,
            )

        self._opening.add(token)
        settle_later = False
        try:
            self.portfolio.reserve(token, float(price) * float(amount))
            try:
                pending = self.queue.execute_buy(token, amount, price)
                fill = await asyncio.shield(pending)
            except asyncio.CancelledError:
                # the buy keeps running; its fill is booked when it lands
                settle_later = True
                pending.add_done_callback(partial(self._finish_open_later, token, signal, stop_loss, take_profit))
                raise
            except BaseException:
                self.portfolio.release(token)
                raise
            position = self._book_open(token, fill, signal, stop_loss, take_profit)
        finally:
            if not settle_later:
                self._opening.discard(token)
        return position

    def _book_open(
        self,
        token: str,
        fill: Fill,
        signal: Optional[Signal],
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> Position:
        entry = fill.executed_price
        position = Position(
            id=f"pos_{now_ms()}_{secrets.token_hex(3)}",
            token=token,
            entry_price=entry,
            amount=fill.amount,
            stop_loss=stop_loss if stop_loss is not None else entry * (1 - self.config.stop_loss_pct / 100.0),
            take_profit=(
                take_profit if take_profit is not None else entry * (1 + self.config.take_profit_pct / 100.0)
            ),
            signal=signal,
            trades=[fill],
            current_price=entry,
            fees=fill.fee,
        )
        self._open[token] = position
        self.portfolio.record_opened_position(position)

        self._log.info(
            "position_opened",
            position_id=position.id,
            token=token,
            entry_price=position.entry_price,
            amount=position.amount,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
        )
        self._publish("position.opened", position.to_dict())
        return position

    def _finish_open_later(
        self,
        token: str,
        signal: Optional[Signal],
        stop_loss: Optional[float],
        take_profit: Optional[float],
        pending: "asyncio.Future[Fill]",
    ) -> None:
        """Done-callback for a buy whose caller was cancelled while it was in flight."""
        self._opening.discard(token)
        if pending.cancelled() or pending.exception() is not None:
            self.portfolio.release(token)
            return
        self._log.info("position_booked_after_cancel", token=token, side="BUY")
        self._book_open(token, pending.result(), signal, stop_loss, take_profit)

    async def close_position(self, token: str, price: Optional[float] = None, reason: str = MANUAL) -> Position:
        """Sell the whole position with `price` as the min price.

        Execution errors propagate and leave the position OPEN; the next sweep retries.
        Cancelling the caller does not cancel the sell: a fill that lands afterwards
        still closes the position.
        """
        position = self._open.get(token)
        if position is None:
            raise PositionError(f"no open position for {token}", token=token)
        if token in self._closing:
            raise PositionError(f"close already in progress for {token}", code=CLOSE_IN_PROGRESS, token=token)

        limit = price if price is not None else (position.current_price or position.entry_price)
        self._closing.add(token)
        settle_later = False
        try:
            pending = self.queue.execute_sell(token, position.amount, limit, priority="high")
            try:
                fill = await asyncio.shield(pending)
            except asyncio.CancelledError:
                settle_later = True
                pending.add_done_callback(partial(self._finish_close_later, token, reason))
                raise
        except TradingError as e:
            self._log.warning("position_close_failed", token=token, reason=reason, code=e.code, error=str(e))
            raise
        finally:
            if not settle_later:
                self._closing.discard(token)

        return self._book_close(position, fill, reason)

    def _book_close(self, position: Position, fill: Fill, reason: str) -> Position:
        token = position.token
        position.trades.append(fill)
        position.exit_price = fill.executed_price
        position.closed_at = utc_now()
        position.close_reason = reason
        position.fees += fill.fee
        position.profit = (fill.executed_price - position.entry_price) * position.amount - position.fees
        position.profit_percentage = position.profit / position.cost * 100.0 if position.cost else 0.0
        position.holding_time_sec = seconds_since(position.opened_at, position.closed_at)
        position.current_price = fill.executed_price
        position.unrealized_pnl = 0.0
        position.unrealized_pnl_pct = 0.0
        position.status = "CLOSED"

        del self._open[token]
        self._closed.append(position)
        self._update_counters(position)

        self.portfolio.record_closed_position(position)
        if self.journal is not None:
            try:
                self.journal.append(position.to_trade_record())
            except OSError as e:
                self._log.error("trade_journal_write_failed", token=token, error=str(e))

        self._log.info(
            "position_closed",
            position_id=position.id,
            token=token,
            reason=reason,
            exit_price=position.exit_price,
            profit=round(position.profit, 8),
            profit_pct=round(position.profit_percentage, 4),
        )
        self._publish("position.closed", position.to_dict())
        return position

    def _finish_close_later(self, token: str, reason: str, pending: "asyncio.Future[Fill]") -> None:
        """Done-callback for a sell whose caller was cancelled while it was in flight."""
        self._closing.discard(token)
        if pending.cancelled():
            return
        error = pending.exception()
        if error is not None:
            self._log.warning("position_close_failed", token=token, reason=reason, error=str(error))
            return
        position = self._open.get(token)
        if position is None:
            return
        self._log.info("position_booked_after_cancel", token=token, side="SELL")
        self._book_close(position, pending.result(), reason)

    def _update_counters(self, position: Position) -> None:
        profit = position.profit or 0.0
        if profit > 0:
            self.wins += 1
        elif profit < 0:
            self.losses += 1
        else:
            self.break_even += 1
        self.total_closed += 1
        held = position.holding_time_sec or 0.0
        self.avg_holding_time_sec += (held - self.avg_holding_time_sec) / self.total_closed

    # ------------------------------------------------------------- sweep

    async def check_positions(self, prices: Dict[str, float]) -> List[Position]:
        """Mark open positions to market and close the ones past SL (<=) or TP (>=).

        Stop-loss is evaluated first. Tokens without a price are skipped.
        """
        closed: List[Position] = []
        for token, position in list(self._open.items()):
            price = prices.get(token)
            if price is None or price <= 0:
                continue
            self._mark(position, price)
            if token in self._closing:
                continue

            if price <= position.stop_loss:
                reason = STOP_LOSS
            elif price >= position.take_profit:
                reason = TAKE_PROFIT
            else:
                continue

            self._log.info("position_trigger", token=token, reason=reason, price=price)
            try:
                closed.append(await self.close_position(token, price, reason))
            except TradingError:
                # stays open; retried on the next sweep
                continue
        return closed

    async def close_all_positions(self, prices: Optional[Dict[str, float]] = None, reason: str = "CLOSE_ALL") -> List[Position]:
        prices = prices or {}
        closed: List[Position] = []
        for token in list(self._open):
            try:
                closed.append(await self.close_position(token, prices.get(token), reason))
            except TradingError:
                continue
        return closed

    def _mark(self, position: Position, price: float) -> None:
        position.current_price = price
        position.unrealized_pnl = (price - position.entry_price) * position.amount
        position.unrealized_pnl_pct = (price - position.entry_price) / position.entry_price * 100.0

    # ------------------------------------------------------------- edits / queries

    def update_position(
        self, token: str, *, stop_loss: Optional[float] = None, take_profit: Optional[float] = None
    ) -> Dict[str, Any]:
        position = self._open.get(token)
        if position is None:
            raise PositionError(f"no open position for {token}", token=token)
        sl = position.stop_loss if stop_loss is None else float(stop_loss)
        tp = position.take_profit if take_profit is None else float(take_profit)
        if sl <= 0 or tp <= 0 or sl >= tp:
            raise InvalidOrderError("stop_loss must be > 0 and below take_profit", stop_loss=sl, take_profit=tp)
        position.stop_loss = sl
        position.take_profit = tp
        self._log.info("position_updated", token=token, stop_loss=sl, take_profit=tp)
        self._publish("position.updated", position.to_dict())
        return position.to_dict()

    def has_position(self, token: str) -> bool:
        return token in self._open

    @property
    def open_count(self) -> int:
        return len(self._open)

    def get_position(self, token: str) -> Optional[Dict[str, Any]]:
        position = self._open.get(token)
        return position.to_dict() if position is not None else None

    def get_open_positions(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self._open.values()]

    def get_closed_positions(self, limit: int = 10) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return [p.to_dict() for p in list(self._closed)[-limit:]]

    def open_tokens(self) -> List[str]:
        return list(self._open)

    def calculate_exposure(self, prices: Optional[Dict[str, float]] = None) -> float:
        """Market value of open positions (last known price when `prices` lacks a token)."""
        prices = prices or {}
        return sum(p.value_at(prices.get(t)) for t, p in self._open.items())

    def get_stats(self) -> Dict[str, Any]:
        decided = self.wins + self.losses
        return {
            "open_positions": len(self._open),
            "total_closed": self.total_closed,
            "winning_trades": self.wins,
            "losing_trades": self.losses,
            "break_even_trades": self.break_even,
            "win_rate": self.wins / decided * 100.0 if decided else 0.0,
            "average_holding_time_sec": self.avg_holding_time_sec,
            "unrealized_pnl": sum(p.unrealized_pnl for p in self._open.values()),
        }

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
