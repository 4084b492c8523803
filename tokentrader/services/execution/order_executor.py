from __future__ import annotations

import asyncio
import random
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol

from tokentrader.models.trade_models import Order


@dataclass(frozen=True)
class ExecutionReport:
    """Raw executor outcome; the queue turns it into a Fill."""

    executed_price: float
    reference_id: str


class Executor(Protocol):
    async def execute(self, order: Order, market_price: float) -> ExecutionReport:
        """Fill `order` near `market_price` or raise. Any exception is a transient failure."""
        ...


class SimulatedExecutor:
    """Paper fills: market price +/- uniform noise after a fixed delay.

    `failure_rate` injects transient errors (0 disables them).
    """

    def __init__(
        self,
        *,
        delay_sec: float = 0.5,
        price_noise_pct: float = 0.5,
        failure_rate: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.delay_sec = float(delay_sec)
        self.price_noise_pct = float(price_noise_pct)
        self.failure_rate = float(failure_rate)
        self._rng = rng or random.Random()

    async def execute(self, order: Order, market_price: float) -> ExecutionReport:
        if self.delay_sec > 0:
            await asyncio.sleep(self.delay_sec)
        if self.failure_rate > 0 and self._rng.random() < self.failure_rate:
            raise RuntimeError("simulated_execution_error")

        noise = self._rng.uniform(-self.price_noise_pct, self.price_noise_pct) / 100.0
        return ExecutionReport(
            executed_price=float(market_price) * (1.0 + noise),
            reference_id=f"sim_{secrets.token_hex(8)}",
        )
