from datetime import datetime, timezone

import pytest

from tokentrader.app.engine import TradingEngine
from tokentrader.infrastructure.storage.trade_journal import MemoryTradeJournal
from tokentrader.models.errors import CIRCUIT_BREAKER_OPEN
from tokentrader.models.market_models import PricePoint, TokenMarketData
from tokentrader.services.execution.order_executor import SimulatedExecutor
from tokentrader.services.market.market_data import SimulatedMarketData
from tokentrader.services.monitoring.metrics_store import read_metrics

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def selloff_prices():
    prices = [100.0] * 45 + [100.0 * 0.97 ** k for k in range(1, 15)]
    prices.append(prices[-1] * 0.92)
    return prices


class ScriptedMarket:
    """Fixed history per token; the current price is whatever the test sets."""

    def __init__(self, history):
        self.history = history
        self.prices = {token: values[-1] for token, values in history.items()}
        self.fail_tokens = False
        self.fail_info = False

    async def get_token_price(self, token):
        return self.prices.get(token)

    async def get_historical_prices(self, token, start, end, interval="15m"):
        values = self.history[token]
        return [PricePoint(timestamp=900.0 * i, price=p, volume=1000.0) for i, p in enumerate(values)]

    async def get_qualified_tokens(self, min_liquidity, min_volume):
        if self.fail_tokens:
            raise ConnectionError("token list unavailable")
        return list(self.history)

    async def get_token_info(self, token):
        if self.fail_info:
            raise ConnectionError("info unavailable")
        return TokenMarketData(
            token=token,
            price=self.prices[token],
            liquidity=1_000_000.0,
            volume_24h=1_000_000.0,
            price_change_24h=0.0,
            volatility=5.0,
        )


def make_engine(config, market, **kwargs):
    return TradingEngine(
        config,
        market=market,
        executor=SimulatedExecutor(delay_sec=0, price_noise_pct=0),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_buy_signal_opens_sized_position_with_volatility_stops(fast_config):
    market = ScriptedMarket({"SOL": selloff_prices()})
    engine = make_engine(fast_config, market)
    price = market.prices["SOL"]

    report = await engine.run_cycle(now=T0)

    assert report.tokens_scanned == 1
    assert report.signals["BUY"] == 1
    assert report.positions_opened == 1
    assert report.errors == 0

    position = engine.positions.get_position("SOL")
    assert position["amount"] * position["entry_price"] == pytest.approx(200.0)
    # volatility 5% halves the configured 5% / 15% stops
    assert position["stop_loss"] == pytest.approx(price * 0.975)
    assert position["take_profit"] == pytest.approx(price * 1.075)
    assert engine.risk.daily.current_exposure == pytest.approx(200.0)
    await engine.stop()


@pytest.mark.asyncio
async def test_stop_loss_is_swept_on_next_cycle(fast_config):
    market = ScriptedMarket({"SOL": selloff_prices()})
    journal = MemoryTradeJournal()
    engine = make_engine(fast_config, market, journal=journal)

    await engine.run_cycle(now=T0)
    market.prices["SOL"] = market.prices["SOL"] * 0.95

    report = await engine.run_cycle(now=T0)

    assert report.positions_checked == 1
    assert report.positions_closed >= 1
    assert journal.records[0]["close_reason"] == "STOP_LOSS"
    assert journal.records[0]["profit"] < 0
    assert engine.risk.consecutive_losses == 1
    assert engine.portfolio.get_metrics()["losing_trades"] == 1
    await engine.stop()


@pytest.mark.asyncio
async def test_repeated_cycle_failures_trip_the_breaker(fast_config):
    market = ScriptedMarket({"SOL": selloff_prices()})
    market.fail_tokens = True
    engine = make_engine(fast_config, market)

    for _ in range(3):
        report = await engine.run_cycle(now=T0)
        assert report.errors == 1

    assert engine.breaker.is_open()
    skipped = await engine.run_cycle(now=T0)
    assert skipped.skipped
    assert skipped.skip_reason == CIRCUIT_BREAKER_OPEN
    assert engine.metrics.cycles_skipped == 1
    await engine.stop()


@pytest.mark.asyncio
async def test_every_token_failing_counts_as_cycle_failure(fast_config):
    market = ScriptedMarket({"SOL": selloff_prices(), "JUP": selloff_prices()})
    market.fail_info = True
    engine = make_engine(fast_config, market)

    report = await engine.run_cycle(now=T0)
    assert report.errors == 2
    assert engine.breaker.consecutive_errors == 1

    market.fail_info = False
    await engine.run_cycle(now=T0)
    assert engine.breaker.consecutive_errors == 0
    await engine.stop()


@pytest.mark.asyncio
async def test_simulated_market_cycle_writes_metrics(fast_config, tmp_path):
    market = SimulatedMarketData(["SOL", "JUP", "BONK"], seed=11, base_liquidity=1_000_000, base_volume=1_000_000)
    metrics_path = tmp_path / "metrics.json"
    engine = make_engine(fast_config, market, metrics_path=metrics_path, before_cycle=market.advance)

    report = await engine.run_cycle()

    assert report.tokens_scanned == 3
    assert sum(report.signals.values()) == 3
    assert report.errors == 0

    saved = read_metrics(metrics_path)
    assert saved["cycles"] == 1
    assert saved["last_cycle"]["tokens_scanned"] == 3
    assert saved["portfolio"]["initial_capital"] == pytest.approx(10_000.0)
    await engine.stop()
