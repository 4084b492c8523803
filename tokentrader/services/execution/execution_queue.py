"""Execution queue: bounded async workers draining a two-level priority queue.

Every accepted order resolves exactly once through the future returned at
submission. Validation aborts are final; executor errors are retried with
exponential backoff, up to `max_retries` times after the first attempt.
"""

from __future__ import annotations

import asyncio
import math
import random
import secrets
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.config import ExecutionConfig
from tokentrader.infrastructure.utils.timeutils import monotonic, now_ms, seconds_since, utc_now
from tokentrader.models.errors import (
    MARKET_DATA_UNAVAILABLE,
    ORDER_TIMEOUT,
    PRICE_OUTSIDE_TOLERANCE,
    QUEUE_SHUTDOWN,
    ExecutionFailure,
    InvalidOrderError,
    OrderCancelledError,
    TradingError,
    ValidationAbort,
)
from tokentrader.models.trade_models import BUY, SELL, Fill, Order
from tokentrader.services.execution.order_executor import Executor, SimulatedExecutor


PriceLookup = Callable[[str], Awaitable[Optional[float]]]

PRIORITIES = ("high", "normal")


class ExecutionQueue:
    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        *,
        price_lookup: PriceLookup,
        executor: Optional[Executor] = None,
        events: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or ExecutionConfig()
        self._price_lookup = price_lookup
        self._rng = rng or random.Random()
        self.executor: Executor = executor or SimulatedExecutor(
            delay_sec=self.config.simulated_delay_sec,
            price_noise_pct=self.config.simulated_price_noise_pct,
            rng=self._rng,
        )
        self.events = events

        self._high: Deque[Order] = deque()
        self._normal: Deque[Order] = deque()
        self._in_flight: Dict[str, Order] = {}
        self._futures: Dict[str, "asyncio.Future[Fill]"] = {}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=self.config.history_size)
        self._workers: Dict[int, asyncio.Task] = {}
        self._wakeup: Optional[asyncio.Event] = None
        self._closed = False

        self._stats: Dict[str, float] = {
            "total": 0,
            "successful": 0,
            "failed": 0,
            "aborted": 0,
            "cancelled": 0,
            "total_execution_time": 0.0,
            "buy_slippage_sum": 0.0,
            "buy_count": 0,
            "sell_slippage_sum": 0.0,
            "sell_count": 0,
        }
        self._log = get_logger("execution_queue")

    # ------------------------------------------------------------- submission

    def execute_buy(
        self, token: str, amount: float, max_price: float, *, priority: str = "normal"
    ) -> "asyncio.Future[Fill]":
        return self._submit(BUY, token, amount, max_price, priority)

    def execute_sell(
        self, token: str, amount: float, min_price: float, *, priority: str = "normal"
    ) -> "asyncio.Future[Fill]":
        return self._submit(SELL, token, amount, min_price, priority)

    def _submit(self, side: str, token: str, amount: float, price: float, priority: str) -> "asyncio.Future[Fill]":
        if self._closed:
            raise TradingError("execution queue is shut down", code=QUEUE_SHUTDOWN)
        self._validate_input(token, amount, price, priority)

        loop = asyncio.get_running_loop()
        order = Order(
            id=f"tx_{now_ms()}_{secrets.token_hex(4)}",
            type=side,
            token=token,
            amount=float(amount),
            limit_price=float(price),
            priority=priority,
        )
        fut: "asyncio.Future[Fill]" = loop.create_future()
        self._futures[order.id] = fut

        if priority == "high":
            self._high.append(order)
        else:
            self._normal.append(order)
        self._stats["total"] += 1

        self._log.info(
            "order_queued",
            order_id=order.id,
            side=side,
            token=token,
            amount=order.amount,
            limit_price=order.limit_price,
            priority=priority,
            queued=self.queued_count,
        )
        self._publish("order.queued", order)
        self._ensure_workers()
        self._signal()
        return fut

    @staticmethod
    def _validate_input(token: str, amount: float, price: float, priority: str) -> None:
        if not isinstance(token, str) or not token.strip():
            raise InvalidOrderError("token must be a non-empty string", token=token)
        for name, value in (("amount", amount), ("price", price)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidOrderError(f"{name} must be a number", **{name: value})
            if not math.isfinite(value) or value <= 0:
                raise InvalidOrderError(f"{name} must be > 0", **{name: value})
        if priority not in PRIORITIES:
            raise InvalidOrderError(f"priority must be one of: {list(PRIORITIES)}", priority=priority)

    def cancel(self, order_id: str) -> bool:
        """Queued orders are removed and rejected now; in-flight ones are flagged
        and stop before their next attempt. Returns False for unknown ids."""
        for dq in (self._high, self._normal):
            for order in dq:
                if order.id == order_id:
                    dq.remove(order)
                    self._finish_cancelled(order, OrderCancelledError("order cancelled while queued", order_id=order_id))
                    return True

        order = self._in_flight.get(order_id)
        if order is not None:
            order.cancel_requested = True
            self._log.info("order_cancel_requested", order_id=order_id)
            return True
        return False

    # ------------------------------------------------------------- workers

    @property
    def queued_count(self) -> int:
        return len(self._high) + len(self._normal)

    def _signal(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def _ensure_workers(self) -> None:
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        for idx in range(self.config.concurrency_limit):
            task = self._workers.get(idx)
            if task is None or task.done():
                self._workers[idx] = asyncio.create_task(self._worker(idx), name=f"exec-worker-{idx}")

    def _pop_next(self) -> Optional[Order]:
        # no await between the check and the pop: one order per worker
        if self._high:
            return self._high.popleft()
        if self._normal:
            return self._normal.popleft()
        return None

    async def _worker(self, idx: int) -> None:
        assert self._wakeup is not None
        while True:
            if idx >= self.config.concurrency_limit:
                return
            order = self._pop_next()
            if order is None:
                if self._closed:
                    return
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            try:
                await self._process(order)
            except Exception as e:  # keep the worker alive
                self._log.error("worker_error", worker=idx, order_id=order.id, error=str(e))

            if self.config.transaction_delay_sec > 0:
                await asyncio.sleep(self.config.transaction_delay_sec)

    async def _process(self, order: Order) -> None:
        order.status = "PROCESSING"
        order.started_at = utc_now()
        self._in_flight[order.id] = order
        started = monotonic()
        try:
            fill = await self._execute_with_retry(order, started)
        except ValidationAbort as e:
            self._stats["aborted"] += 1
            self._finish_failed(order, e, "order.aborted")
        except OrderCancelledError as e:
            self._finish_cancelled(order, e)
        except ExecutionFailure as e:
            self._stats["failed"] += 1
            self._finish_failed(order, e, "order.failed")
        else:
            self._finish_completed(order, fill)
        finally:
            self._in_flight.pop(order.id, None)

    async def _execute_with_retry(self, order: Order, started: float) -> Fill:
        max_attempts = self.config.max_retries + 1
        while True:
            if order.cancel_requested:
                raise OrderCancelledError("order cancelled before attempt", order_id=order.id, attempts=order.attempts)

            market_price = await self._validate_transaction(order)
            order.attempts += 1
            try:
                report = await self.executor.execute(order, market_price)
            except Exception as e:
                if order.attempts > self.config.max_retries:
                    raise ExecutionFailure(
                        f"execution failed after {order.attempts} attempts: {e}",
                        order_id=order.id,
                        attempts=order.attempts,
                    ) from e
                delay = self._backoff_delay(order.attempts)
                self._log.warning(
                    "execution_retry",
                    order_id=order.id,
                    attempt=order.attempts,
                    max_attempts=max_attempts,
                    delay_sec=round(delay, 3),
                    error=str(e),
                )
                await asyncio.sleep(delay)
                continue

            return self._build_fill(order, report.executed_price, report.reference_id, monotonic() - started)

    def _backoff_delay(self, attempt: int) -> float:
        cfg = self.config
        delay = cfg.retry_base_delay_sec * (cfg.retry_factor ** (attempt - 1))
        delay += self._rng.uniform(0, delay * 0.1)
        return min(delay, cfg.retry_max_delay_sec)

    async def _validate_transaction(self, order: Order) -> float:
        """Re-check the market price against the order limit. Raises ValidationAbort."""
        timeout = self.config.timeout_sec
        elapsed = seconds_since(order.created_at)
        if elapsed > timeout:
            raise ValidationAbort("order timed out", code=ORDER_TIMEOUT, order_id=order.id, elapsed_sec=elapsed)

        try:
            price = await asyncio.wait_for(self._price_lookup(order.token), timeout=max(0.001, timeout - elapsed))
        except asyncio.TimeoutError:
            raise ValidationAbort("price lookup timed out", code=ORDER_TIMEOUT, order_id=order.id)
        except Exception as e:
            raise ValidationAbort(f"price lookup failed: {e}", code=MARKET_DATA_UNAVAILABLE, order_id=order.id)

        if price is None or price <= 0:
            raise ValidationAbort("no market price", code=MARKET_DATA_UNAVAILABLE, order_id=order.id, token=order.token)

        tolerance = self.config.slippage_tolerance_pct / 100.0
        if order.type == BUY and price > order.limit_price * (1.0 + tolerance):
            raise ValidationAbort(
                "price above limit",
                code=PRICE_OUTSIDE_TOLERANCE,
                order_id=order.id,
                price=price,
                limit=order.limit_price,
            )
        if order.type == SELL and price < order.limit_price * (1.0 - tolerance):
            raise ValidationAbort(
                "price below limit",
                code=PRICE_OUTSIDE_TOLERANCE,
                order_id=order.id,
                price=price,
                limit=order.limit_price,
            )
        return float(price)

    def _build_fill(self, order: Order, executed_price: float, reference_id: str, elapsed: float) -> Fill:
        requested = order.limit_price
        return Fill(
            order_id=order.id,
            type=order.type,
            token=order.token,
            amount=order.amount,
            requested_price=requested,
            executed_price=executed_price,
            slippage_percent=self._slippage_pct(order.type, requested, executed_price),
            fee=executed_price * order.amount * self.config.fee_rate,
            timestamp=utc_now(),
            reference_id=reference_id,
            attempts=order.attempts,
            execution_time_sec=elapsed,
        )

    @staticmethod
    def _slippage_pct(side: str, requested: float, executed: float) -> float:
        # positive = worse than the limit: paid more on a buy, received less on a sell
        if side == SELL:
            return (requested - executed) / requested * 100.0
        return (executed - requested) / requested * 100.0

    # ------------------------------------------------------------- settlement

    def _settle(self, order: Order, *, result: Optional[Fill] = None, error: Optional[BaseException] = None) -> None:
        order.finished_at = utc_now()
        fut = self._futures.pop(order.id, None)
        if fut is not None and not fut.done():
            if error is not None:
                fut.set_exception(error)
            else:
                fut.set_result(result)
        entry = order.to_dict()
        entry["fill"] = result.to_dict() if result is not None else None
        self._history.append(entry)

    def _finish_completed(self, order: Order, fill: Fill) -> None:
        order.status = "COMPLETED"
        self._stats["successful"] += 1
        self._stats["total_execution_time"] += fill.execution_time_sec
        side = "buy" if order.type == BUY else "sell"
        self._stats[f"{side}_slippage_sum"] += fill.slippage_percent
        self._stats[f"{side}_count"] += 1
        self._settle(order, result=fill)
        self._log.info(
            "order_completed",
            order_id=order.id,
            side=order.type,
            token=order.token,
            executed_price=fill.executed_price,
            slippage_pct=round(fill.slippage_percent, 4),
            fee=fill.fee,
            attempts=order.attempts,
        )
        self._publish("order.completed", order, fill=fill.to_dict())

    def _finish_failed(self, order: Order, error: TradingError, topic: str) -> None:
        order.status = "FAILED"
        order.error = str(error)
        order.error_code = error.code
        self._settle(order, error=error)
        self._log.warning(
            "order_aborted" if topic == "order.aborted" else "order_failed",
            order_id=order.id,
            side=order.type,
            token=order.token,
            code=error.code,
            error=str(error),
            attempts=order.attempts,
        )
        self._publish(topic, order)

    def _finish_cancelled(self, order: Order, error: TradingError) -> None:
        order.status = "CANCELLED"
        order.error = str(error)
        order.error_code = error.code
        self._stats["cancelled"] += 1
        self._settle(order, error=error)
        self._log.info("order_cancelled", order_id=order.id, token=order.token, code=error.code)
        self._publish("order.cancelled", order)

    # ------------------------------------------------------------- reporting

    def get_pending_transactions(self) -> List[Dict[str, Any]]:
        queued = [o.to_dict() for o in list(self._high) + list(self._normal)]
        return queued + [o.to_dict() for o in self._in_flight.values()]

    def get_transaction_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        """Counters and averages. Slippage averages are positive when fills were adverse."""
        s = self._stats
        done = s["successful"]
        return {
            "total": int(s["total"]),
            "successful": int(s["successful"]),
            "failed": int(s["failed"]),
            "aborted": int(s["aborted"]),
            "cancelled": int(s["cancelled"]),
            "queued": self.queued_count,
            "in_flight": len(self._in_flight),
            "average_execution_time_sec": s["total_execution_time"] / done if done else 0.0,
            "average_buy_slippage_pct": s["buy_slippage_sum"] / s["buy_count"] if s["buy_count"] else 0.0,
            "average_sell_slippage_pct": s["sell_slippage_sum"] / s["sell_count"] if s["sell_count"] else 0.0,
        }

    # ------------------------------------------------------------- lifecycle

    def update_config(self, **values: Any) -> ExecutionConfig:
        """Swap in a new validated config snapshot. Worker count follows concurrency_limit."""
        self.config = ExecutionConfig.model_validate({**self.config.model_dump(), **values})
        self._log.info("execution_config_updated", **values)
        if self._wakeup is not None and not self._closed:
            self._ensure_workers()
            self._signal()
        return self.config

    async def shutdown(self, *, cancel_pending: bool = True) -> None:
        """Stop accepting orders. In-flight orders finish; queued ones are rejected
        (or drained when cancel_pending is False)."""
        self._closed = True
        if cancel_pending:
            while self._high or self._normal:
                order = self._pop_next()
                assert order is not None
                self._finish_cancelled(order, OrderCancelledError("execution queue shut down", code=QUEUE_SHUTDOWN))
        self._signal()
        tasks = list(self._workers.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._log.info("execution_queue_shutdown", stats=self.get_stats())

    def _publish(self, topic: str, order: Order, **extra: Any) -> None:
        if self.events is not None:
            self.events.publish(topic, {**order.to_dict(), **extra})
