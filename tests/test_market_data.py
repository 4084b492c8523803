from datetime import timedelta

import pytest

from tokentrader.infrastructure.cache.ttl_cache import TTLCache
from tokentrader.infrastructure.utils.timeutils import utc_now
from tokentrader.models.market_models import PricePoint
from tokentrader.services.market.market_data import CachedMarketData, SimulatedMarketData, interval_seconds


class CountingProvider:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = {}

    def _count(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.fail:
            raise ConnectionError("provider down")

    async def get_token_price(self, token):
        self._count("price")
        return {"SOL": 150.0, "ZERO": 0.0}.get(token)

    async def get_historical_prices(self, token, start, end, interval="15m"):
        self._count("history")
        return [PricePoint(timestamp=start.timestamp(), price=1.0), PricePoint(timestamp=end.timestamp(), price=2.0)]

    async def get_qualified_tokens(self, min_liquidity, min_volume):
        self._count("qualified")
        return ["SOL", "JUP"]

    async def get_token_info(self, token):
        self._count("info")
        return None


@pytest.mark.asyncio
async def test_prices_are_served_from_cache():
    provider = CountingProvider()
    market = CachedMarketData(provider, TTLCache())

    assert await market.get_token_price("SOL") == 150.0
    assert await market.get_token_price("SOL") == 150.0
    assert provider.calls["price"] == 1

    # non-positive and missing prices are not cached
    assert await market.get_token_price("ZERO") is None
    assert await market.get_token_price("NOPE") is None
    assert provider.calls["price"] == 3


@pytest.mark.asyncio
async def test_history_and_tokens_are_cached():
    provider = CountingProvider()
    market = CachedMarketData(provider, TTLCache())
    end = utc_now()
    start = end - timedelta(hours=1)

    first = await market.get_historical_prices("SOL", start, end)
    second = await market.get_historical_prices("SOL", start, end)
    assert first == second
    assert provider.calls["history"] == 1

    assert await market.get_qualified_tokens(1_000, 1_000) == ["SOL", "JUP"]
    assert await market.get_qualified_tokens(1_000, 1_000) == ["SOL", "JUP"]
    assert provider.calls["qualified"] == 1


@pytest.mark.asyncio
async def test_provider_failures_become_empty_results():
    market = CachedMarketData(CountingProvider(fail=True), TTLCache())
    end = utc_now()

    assert await market.get_token_price("SOL") is None
    assert await market.get_historical_prices("SOL", end - timedelta(hours=1), end) == []
    assert await market.get_qualified_tokens(0, 0) == []
    assert await market.get_token_info("SOL") is None


def test_interval_seconds():
    assert interval_seconds("15m") == 900
    assert interval_seconds("1d") == 86_400
    with pytest.raises(ValueError):
        interval_seconds("7m")


@pytest.mark.asyncio
async def test_simulated_market_is_deterministic_per_seed():
    a = SimulatedMarketData(["SOL", "JUP"], seed=7)
    b = SimulatedMarketData(["SOL", "JUP"], seed=7)
    assert await a.get_token_price("SOL") == await b.get_token_price("SOL")
    assert await a.get_token_price("NOPE") is None

    a.advance(3)
    b.advance(3)
    assert await a.get_token_price("JUP") == await b.get_token_price("JUP")


@pytest.mark.asyncio
async def test_simulated_history_ends_at_current_price():
    market = SimulatedMarketData(["SOL"], seed=1)
    end = utc_now()
    history = await market.get_historical_prices("SOL", end - timedelta(hours=1), end)

    assert len(history) == 5
    assert history[-1].price == await market.get_token_price("SOL")
    steps = {round(b.timestamp - a.timestamp) for a, b in zip(history, history[1:])}
    assert steps == {900}

    market.set_price("SOL", 42.0)
    again = await market.get_historical_prices("SOL", end - timedelta(hours=1), end)
    assert again[-1].price == 42.0
    assert await market.get_historical_prices("SOL", end, end) == []


@pytest.mark.asyncio
async def test_simulated_token_info_and_qualification():
    market = SimulatedMarketData(["SOL", "JUP"], seed=3, base_liquidity=1_000, base_volume=1_000)
    info = await market.get_token_info("SOL")
    assert info.token == "SOL"
    assert info.price == await market.get_token_price("SOL")
    assert info.liquidity >= 500
    assert info.volatility >= 0

    assert await market.get_qualified_tokens(0, 0) == ["SOL", "JUP"]
    assert await market.get_qualified_tokens(10_000, 0) == []
