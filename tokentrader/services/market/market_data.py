"""Market data collaborators.

Providers return None / empty on missing data instead of raising; callers
treat that as MARKET_DATA_UNAVAILABLE.
"""

from __future__ import annotations

import math
import random
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from tokentrader.infrastructure.cache.ttl_cache import TTLCache
from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.timeutils import utc_now
from tokentrader.models.market_models import PricePoint, TokenMarketData
from tokentrader.services.market.indicators import percent_change, volatility_pct


INTERVAL_SECONDS: Dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}


def interval_seconds(interval: str) -> int:
    try:
        return INTERVAL_SECONDS[interval]
    except KeyError:
        raise ValueError(f"unsupported interval: {interval}")


class MarketDataProvider(Protocol):
    async def get_token_price(self, token: str) -> Optional[float]: ...

    async def get_historical_prices(
        self, token: str, start: datetime, end: datetime, interval: str = "15m"
    ) -> List[PricePoint]: ...

    async def get_qualified_tokens(self, min_liquidity: float, min_volume: float) -> List[str]: ...

    async def get_token_info(self, token: str) -> Optional[TokenMarketData]: ...


class CachedMarketData:
    """Wraps a provider with an injected TTLCache. Failures are logged and become None / []."""

    def __init__(
        self,
        provider: MarketDataProvider,
        cache: TTLCache,
        *,
        price_ttl_sec: float = 30.0,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.price_ttl_sec = float(price_ttl_sec)
        self._log = get_logger("market_data")

    async def get_token_price(self, token: str) -> Optional[float]:
        key = ("price", token)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            price = await self.provider.get_token_price(token)
        except Exception as e:
            self._log.warning("price_fetch_failed", token=token, error=str(e))
            return None
        if price is not None and price > 0:
            self.cache.set(key, float(price), ttl_sec=self.price_ttl_sec)
            return float(price)
        return None

    async def get_historical_prices(
        self, token: str, start: datetime, end: datetime, interval: str = "15m"
    ) -> List[PricePoint]:
        step = interval_seconds(interval)
        # bucket the window so consecutive cycles share one entry per interval
        key = ("history", token, int(start.timestamp()) // step, int(end.timestamp()) // step, interval)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        try:
            points = await self.provider.get_historical_prices(token, start, end, interval)
        except Exception as e:
            self._log.warning("history_fetch_failed", token=token, error=str(e))
            return []
        points = list(points or [])
        if points:
            self.cache.set(key, tuple(points))
        return points

    async def get_qualified_tokens(self, min_liquidity: float, min_volume: float) -> List[str]:
        key = ("qualified", float(min_liquidity), float(min_volume))
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)
        try:
            tokens = await self.provider.get_qualified_tokens(min_liquidity, min_volume)
        except Exception as e:
            self._log.warning("qualified_tokens_fetch_failed", error=str(e))
            return []
        tokens = list(tokens or [])
        self.cache.set(key, tuple(tokens))
        return tokens

    async def get_token_info(self, token: str) -> Optional[TokenMarketData]:
        key = ("info", token)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            info = await self.provider.get_token_info(token)
        except Exception as e:
            self._log.warning("token_info_fetch_failed", token=token, error=str(e))
            return None
        if info is not None:
            self.cache.set(key, info, ttl_sec=self.price_ttl_sec)
        return info


class SimulatedMarketData:
    """Seeded random walk per token for dry runs and tests.

    History is generated backwards from the current price the first time a
    token is queried; `advance()` moves every token one step forward.
    """

    def __init__(
        self,
        tokens: Sequence[str],
        *,
        seed: Optional[int] = None,
        step_volatility_pct: float = 1.0,
        base_liquidity: float = 500_000.0,
        base_volume: float = 250_000.0,
        interval: str = "15m",
    ) -> None:
        self._rng = random.Random(seed)
        self.step_volatility_pct = float(step_volatility_pct)
        self.step_sec = interval_seconds(interval)
        self._prices: Dict[str, float] = {}
        self._liquidity: Dict[str, float] = {}
        self._volume: Dict[str, float] = {}
        self._history: Dict[str, List[PricePoint]] = {}
        for token in tokens:
            self._prices[token] = round(10 ** self._rng.uniform(-3, 2), 8)
            self._liquidity[token] = base_liquidity * self._rng.uniform(0.5, 4.0)
            self._volume[token] = base_volume * self._rng.uniform(0.5, 4.0)

    @property
    def tokens(self) -> List[str]:
        return list(self._prices)

    def set_price(self, token: str, price: float) -> None:
        self._prices[token] = float(price)
        history = self._history.get(token)
        if history:
            last = history[-1]
            history.append(PricePoint(timestamp=last.timestamp + self.step_sec, price=float(price), volume=last.volume))

    def advance(self, steps: int = 1) -> None:
        for _ in range(steps):
            for token in self._prices:
                self._step(token)

    def _step(self, token: str) -> None:
        ret = self._rng.gauss(0.0, self.step_volatility_pct / 100.0)
        price = max(1e-9, self._prices[token] * math.exp(ret))
        self._prices[token] = price
        history = self._history.get(token)
        if history:
            ts = history[-1].timestamp + self.step_sec
            history.append(PricePoint(timestamp=ts, price=price, volume=self._volume_sample(token)))

    def _volume_sample(self, token: str) -> float:
        per_step = self._volume[token] / (86400 / self.step_sec)
        return per_step * self._rng.uniform(0.5, 1.5)

    def _ensure_history(self, token: str, end_ts: float, count: int) -> List[PricePoint]:
        history = self._history.get(token)
        if history and len(history) >= count:
            return history
        price = self._prices[token]
        prices = [price]
        for _ in range(count - 1):
            ret = self._rng.gauss(0.0, self.step_volatility_pct / 100.0)
            prices.append(max(1e-9, prices[-1] / math.exp(ret)))
        prices.reverse()
        start_ts = end_ts - (count - 1) * self.step_sec
        history = [
            PricePoint(timestamp=start_ts + i * self.step_sec, price=p, volume=self._volume_sample(token))
            for i, p in enumerate(prices)
        ]
        self._history[token] = history
        return history

    async def get_token_price(self, token: str) -> Optional[float]:
        return self._prices.get(token)

    async def get_historical_prices(
        self, token: str, start: datetime, end: datetime, interval: str = "15m"
    ) -> List[PricePoint]:
        if token not in self._prices or end <= start:
            return []
        count = int((end - start).total_seconds() // self.step_sec) + 1
        history = self._ensure_history(token, end.timestamp(), count)
        return history[-count:]

    async def get_qualified_tokens(self, min_liquidity: float, min_volume: float) -> List[str]:
        return [t for t in self._prices if self._liquidity[t] >= min_liquidity and self._volume[t] >= min_volume]

    async def get_token_info(self, token: str) -> Optional[TokenMarketData]:
        price = self._prices.get(token)
        if price is None:
            return None
        history = self._ensure_history(token, utc_now().timestamp(), int(86400 // self.step_sec) + 1)
        day = [p.price for p in history[-(int(86400 // self.step_sec) + 1):]]
        return TokenMarketData(
            token=token,
            price=price,
            liquidity=self._liquidity[token],
            volume_24h=self._volume[token],
            price_change_24h=percent_change(day[0], day[-1]) if len(day) >= 2 else 0.0,
            volatility=volatility_pct(day),
        )
