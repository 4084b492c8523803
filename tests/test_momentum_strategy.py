from datetime import datetime, timedelta, timezone

import pytest

from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.models.market_models import PriceSeries, TokenMarketData
from tokentrader.models.trade_models import BUY, NONE, SELL, Signal
from tokentrader.services.strategy.momentum import (
    AGREEMENT_BOOST_REASON,
    CONTRARY_PENALTY_REASON,
    INVALID_INPUT_DATA,
    MARKET_CONDITIONS_NOT_MET,
    MomentumStrategy,
    signal_strength,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def selloff_prices():
    """Flat, then a steady 3% slide ending in an 8% drop."""
    prices = [100.0] * 45 + [100.0 * 0.97 ** k for k in range(1, 15)]
    prices.append(prices[-1] * 0.92)
    return prices


def rally_prices():
    prices = [100.0] * 45 + [100.0 * 1.03 ** k for k in range(1, 15)]
    prices.append(prices[-1] * 1.08)
    return prices


def series(prices, token="SOL"):
    return PriceSeries.from_values(token, prices, [1000.0] * len(prices), step=900.0)


def market(token="SOL", **overrides):
    data = dict(token=token, price=1.0, liquidity=1_000_000.0, volume_24h=1_000_000.0, price_change_24h=0.0, volatility=5.0)
    data.update(overrides)
    return TokenMarketData(**data)


@pytest.fixture
def strategy():
    return MomentumStrategy()


def test_oversold_selloff_produces_buy(strategy):
    signal = strategy.generate_signal(series(selloff_prices()), market(), now=T0)

    assert signal.type == BUY
    assert signal.confidence >= 0.8
    assert any(r.startswith("OVERSOLD_RSI") for r in signal.reasons)
    assert signal.price == pytest.approx(selloff_prices()[-1])


def test_overbought_rally_produces_sell(strategy):
    signal = strategy.generate_signal(series(rally_prices()), market(), now=T0)

    assert signal.type == SELL
    assert any(r.startswith("OVERBOUGHT_RSI") for r in signal.reasons)
    assert "PRICE_ABOVE_UPPER_BAND" in signal.reasons


def test_short_series_is_invalid_input(strategy):
    signal = strategy.generate_signal(series([1.0] * 10), market(), now=T0)
    assert signal.type == NONE
    assert signal.reasons == [INVALID_INPUT_DATA]
    assert signal.confidence == 0.0


def test_non_positive_price_is_invalid_input(strategy):
    prices = selloff_prices()
    prices[10] = 0.0
    assert strategy.generate_signal(series(prices), market(), now=T0).reasons == [INVALID_INPUT_DATA]


@pytest.mark.parametrize(
    "info",
    [
        None,
        market(liquidity=10.0),
        market(volume_24h=10.0),
        market(price_change_24h=35.0),
        market(price_change_24h=-35.0),
    ],
)
def test_market_gate_suppresses_signal(strategy, info):
    signal = strategy.generate_signal(series(selloff_prices()), info, now=T0)
    assert signal.type == NONE
    assert signal.reasons == [MARKET_CONDITIONS_NOT_MET]


def test_signal_is_published_and_tracked():
    events = EventBus()
    seen = []
    events.subscribe("signal.generated", lambda topic, payload: seen.append(payload))
    strategy = MomentumStrategy(events=events)

    signal = strategy.generate_signal(series(selloff_prices()), market(), now=T0)

    assert seen and seen[0]["type"] == signal.type
    assert strategy.get_metrics()["total_signals"] == 1
    assert strategy.update_signal_outcome("SOL", "CORRECT", 12.5)
    assert strategy.get_metrics()["correct_signals"] == 1
    assert not strategy.update_signal_outcome("SOL", "CORRECT")


def _signal(kind, confidence, at, token="SOL"):
    return Signal(token=token, type=kind, confidence=confidence, strength=signal_strength(confidence), created_at=at)


def test_contrary_signal_within_window_is_penalised(strategy):
    strategy.apply_persistence_filter(_signal(BUY, 0.9, T0))
    out = strategy.apply_persistence_filter(_signal(SELL, 1.0, T0 + timedelta(minutes=10)))

    assert out.type == SELL
    assert out.confidence == pytest.approx(0.7)
    assert out.reasons[-1] == CONTRARY_PENALTY_REASON


def test_weak_previous_signal_does_not_penalise(strategy):
    strategy.apply_persistence_filter(_signal(BUY, 0.6, T0))
    out = strategy.apply_persistence_filter(_signal(SELL, 1.0, T0 + timedelta(minutes=10)))
    assert out.confidence == 1.0


def test_agreeing_signal_is_boosted_and_capped(strategy):
    strategy.apply_persistence_filter(_signal(BUY, 0.9, T0))
    out = strategy.apply_persistence_filter(_signal(BUY, 0.85, T0 + timedelta(minutes=5)))
    assert out.confidence == pytest.approx(0.935)
    assert out.reasons[-1] == AGREEMENT_BOOST_REASON

    capped = strategy.apply_persistence_filter(_signal(BUY, 1.2, T0 + timedelta(minutes=6)))
    assert capped.confidence == 1.0


def test_previous_signal_expires_after_window(strategy):
    strategy.apply_persistence_filter(_signal(BUY, 0.9, T0))
    out = strategy.apply_persistence_filter(_signal(SELL, 1.0, T0 + timedelta(hours=1, seconds=1)))
    assert out.confidence == 1.0
    assert CONTRARY_PENALTY_REASON not in out.reasons


def test_none_signals_are_not_remembered(strategy):
    strategy.apply_persistence_filter(_signal(BUY, 0.9, T0))
    strategy.apply_persistence_filter(_signal(NONE, 0.0, T0 + timedelta(minutes=1)))
    assert strategy.last_signal("SOL").type == BUY


def test_signal_strength_bands():
    assert signal_strength(0.85) == "STRONG"
    assert signal_strength(0.65) == "MEDIUM"
    assert signal_strength(0.2) == "WEAK"
