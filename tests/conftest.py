from typing import Dict, List, Optional

import pytest

from tokentrader.infrastructure.utils.config import ExecutionConfig, TokenTraderConfig
from tokentrader.services.execution.order_executor import ExecutionReport, SimulatedExecutor


class PriceBoard:
    """Mutable token -> price map usable as an async price lookup."""

    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self.prices: Dict[str, float] = dict(prices or {})
        self.lookups: List[str] = []

    async def __call__(self, token: str) -> Optional[float]:
        self.lookups.append(token)
        return self.prices.get(token)


class FlakyExecutor:
    """Fails the first `failures` calls, then fills at the market price."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def execute(self, order, market_price: float) -> ExecutionReport:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"exchange unavailable ({self.calls})")
        return ExecutionReport(executed_price=market_price, reference_id=f"ref_{self.calls}")


@pytest.fixture
def fast_execution() -> ExecutionConfig:
    return ExecutionConfig(
        concurrency_limit=1,
        transaction_delay_sec=0,
        timeout_sec=5,
        max_retries=3,
        retry_base_delay_sec=0,
        retry_max_delay_sec=0,
        fee_rate=0,
        simulated_delay_sec=0,
        simulated_price_noise_pct=0,
    )


@pytest.fixture
def exact_executor() -> SimulatedExecutor:
    return SimulatedExecutor(delay_sec=0, price_noise_pct=0)


@pytest.fixture
def board() -> PriceBoard:
    return PriceBoard()


@pytest.fixture
def flaky_executor_factory():
    return FlakyExecutor


@pytest.fixture
def fast_config(fast_execution) -> TokenTraderConfig:
    base = TokenTraderConfig()
    return base.model_copy(
        update={"execution": fast_execution, "cycle": base.cycle.model_copy(update={"batch_pause_sec": 0})}
    )
