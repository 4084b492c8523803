"""Trading engine: one cycle = sweep positions, scan qualified tokens, open new positions."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from tokentrader.api.state import AppState, set_state
from tokentrader.infrastructure.cache.ttl_cache import TTLCache
from tokentrader.infrastructure.events.event_bus import EventBus
from tokentrader.infrastructure.logging.logging import bind_context, clear_context, configure_logging, get_logger
from tokentrader.infrastructure.storage.trade_journal import JsonlTradeJournal, TradeJournal
from tokentrader.infrastructure.utils.config import TokenTraderConfig, load_config, set_config
from tokentrader.infrastructure.utils.timeutils import monotonic, to_iso, utc_now
from tokentrader.models.errors import CIRCUIT_BREAKER_OPEN, MARKET_DATA_UNAVAILABLE, TradingError
from tokentrader.models.market_models import PriceSeries
from tokentrader.models.trade_models import BUY, SELL
from tokentrader.services.execution.execution_queue import ExecutionQueue
from tokentrader.services.execution.order_executor import Executor
from tokentrader.services.market.indicator_engine import IndicatorEngine
from tokentrader.services.market.market_data import CachedMarketData, MarketDataProvider, SimulatedMarketData
from tokentrader.services.monitoring.metrics import CycleReport, MetricsSnapshot
from tokentrader.services.monitoring.metrics_store import write_metrics
from tokentrader.services.portfolio.portfolio_ledger import PortfolioLedger
from tokentrader.services.portfolio.position_ledger import PositionLedger
from tokentrader.services.risk.circuit_breaker import CircuitBreaker
from tokentrader.services.risk.risk_manager import RiskManager
from tokentrader.services.strategy.momentum import MomentumStrategy
from tokentrader.services.strategy.signal_history import CORRECT, INCORRECT


OPENED = "OPENED"
CLOSED_ON_SIGNAL = "CLOSED_ON_SIGNAL"
SELL_SIGNAL = "SELL_SIGNAL"


class TradingEngine:
    """Wires the pipeline from one config snapshot and runs it cycle by cycle."""

    def __init__(
        self,
        config: TokenTraderConfig,
        *,
        market: MarketDataProvider,
        events: Optional[EventBus] = None,
        executor: Optional[Executor] = None,
        journal: Optional[TradeJournal] = None,
        breaker: Optional[CircuitBreaker] = None,
        metrics_path: Optional[Path] = None,
        before_cycle: Optional[Callable[[], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self.market = market
        self.events = events or EventBus()
        self.metrics_path = metrics_path
        self._before_cycle = before_cycle
        self._log = get_logger("engine")

        self.strategy = MomentumStrategy(
            config=config.strategy,
            engine=IndicatorEngine.from_config(config.indicators, config.strategy),
            events=self.events,
        )
        self.risk = RiskManager(config.risk, events=self.events)
        self.queue = ExecutionQueue(
            config.execution,
            price_lookup=market.get_token_price,
            executor=executor,
            events=self.events,
            rng=rng,
        )
        self.portfolio = PortfolioLedger(config.portfolio, events=self.events)
        self.positions = PositionLedger(
            config.positions,
            queue=self.queue,
            portfolio=self.portfolio,
            journal=journal,
            events=self.events,
        )
        self.breaker = breaker or CircuitBreaker(
            max_consecutive_errors=config.cycle.max_consecutive_errors,
            cooldown_sec=config.cycle.circuit_breaker_cooldown_sec,
        )

        self.metrics = MetricsSnapshot(environment=config.environment, dry_run=config.development.dry_run)
        self._last_prices: Dict[str, float] = {}

        self.events.subscribe("position.opened", self._on_position_opened)
        self.events.subscribe("position.closed", self._on_position_closed)
        self.events.subscribe("order.failed", self._on_order_failed)

    # ------------------------------------------------------------- event handlers

    def _on_position_opened(self, topic: str, payload: Dict[str, Any]) -> None:
        self.risk.register_trade(payload["token"], payload["entry_price"] * payload["amount"])

    def _on_position_closed(self, topic: str, payload: Dict[str, Any]) -> None:
        profit = float(payload.get("profit") or 0.0)
        self.risk.update_trade_outcome(profit, released_value=payload["entry_price"] * payload["amount"])
        self.strategy.update_signal_outcome(payload["token"], CORRECT if profit > 0 else INCORRECT, profit)

    def _on_order_failed(self, topic: str, payload: Dict[str, Any]) -> None:
        self.breaker.record_failure("execution_queue", TradingError(payload.get("error") or "order failed"))

    # ------------------------------------------------------------- cycle

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        now = now or utc_now()
        report = CycleReport(started_at=to_iso(now) or "")
        started = monotonic()

        if self.breaker.is_open():
            report.skipped = True
            report.skip_reason = CIRCUIT_BREAKER_OPEN
            self.metrics.cycles_skipped += 1
            self._log.warning("cycle_skipped", reason=CIRCUIT_BREAKER_OPEN, **self.breaker.to_dict())
            self._finish(report, started)
            return report

        if self._before_cycle is not None:
            self._before_cycle()

        failures_before = self.breaker.consecutive_errors
        try:
            await self._sweep_positions(report)
            tokens = await self.market.get_qualified_tokens(
                self.config.strategy.min_liquidity, self.config.strategy.min_volume_24h
            )
            report.tokens_scanned = len(tokens)
            await self._process_batches(tokens, now, report)
        except Exception as e:
            report.errors += 1
            self.breaker.record_failure("cycle", e)
            self._log.error("cycle_failed", error=str(e), consecutive_errors=self.breaker.consecutive_errors)
        else:
            if report.errors and report.errors >= report.tokens_scanned:
                self.breaker.record_failure("cycle", RuntimeError(f"{report.errors} token errors"))
            elif not report.errors and self.breaker.consecutive_errors == failures_before:
                self.breaker.record_success()

        self.metrics.cycles += 1
        self._finish(report, started)
        return report

    async def _sweep_positions(self, report: CycleReport) -> None:
        tokens = self.positions.open_tokens()
        prices = await self._fetch_prices(tokens)
        report.positions_checked = len(prices)
        closed = await self.positions.check_positions(prices)
        report.positions_closed += len(closed)

    async def _fetch_prices(self, tokens: List[str]) -> Dict[str, float]:
        results = await asyncio.gather(*(self.market.get_token_price(t) for t in tokens))
        prices: Dict[str, float] = {}
        for token, price in zip(tokens, results):
            if price is not None and price > 0:
                prices[token] = float(price)
                self._last_prices[token] = float(price)
        return prices

    async def _process_batches(self, tokens: List[str], now: datetime, report: CycleReport) -> None:
        size = self.config.cycle.batch_size
        batches = [tokens[i:i + size] for i in range(0, len(tokens), size)]
        for idx, batch in enumerate(batches):
            results = await asyncio.gather(
                *(self.process_token(token, now=now) for token in batch), return_exceptions=True
            )
            for token, result in zip(batch, results):
                if isinstance(result, BaseException):
                    report.errors += 1
                    self._log.error("token_processing_failed", token=token, error=str(result))
                    continue
                signal_type, outcome = result
                report.signals[signal_type] = report.signals.get(signal_type, 0) + 1
                if outcome == OPENED:
                    report.positions_opened += 1
                elif outcome == CLOSED_ON_SIGNAL:
                    report.positions_closed += 1
                elif outcome is not None:
                    report.reject(outcome)
            if idx < len(batches) - 1 and self.config.cycle.batch_pause_sec > 0:
                await asyncio.sleep(self.config.cycle.batch_pause_sec)

    async def process_token(self, token: str, *, now: Optional[datetime] = None) -> Tuple[str, Optional[str]]:
        """history -> signal -> risk gate -> size -> open. Returns (signal type, outcome)."""
        now = now or utc_now()
        bind_context(token=token)
        try:
            info = await self.market.get_token_info(token)
            if info is None or info.price is None:
                return "NONE", MARKET_DATA_UNAVAILABLE
            self._last_prices[token] = info.price

            start = now - timedelta(hours=self.config.cycle.history_hours)
            points = await self.market.get_historical_prices(token, start, now, self.config.cycle.history_interval)
            series = PriceSeries.from_points(token, points)
            signal = self.strategy.generate_signal(series, info, now=now)

            if signal.type == SELL:
                if self.positions.has_position(token):
                    try:
                        await self.positions.close_position(token, info.price, SELL_SIGNAL)
                    except TradingError as e:
                        return SELL, e.code
                    return SELL, CLOSED_ON_SIGNAL
                return SELL, None
            if signal.type != BUY:
                return signal.type, None
            if self.positions.has_position(token):
                return BUY, None

            snapshot = self.portfolio.get_risk_snapshot(
                exposure=self.positions.calculate_exposure(self._last_prices),
                open_positions=self.positions.open_count,
            )
            decision = self.risk.can_trade(snapshot, info, signal)
            if not decision.allowed:
                return BUY, decision.reason

            size = self.risk.calculate_position_size(info.price, snapshot, info, signal)
            if not size.allowed:
                return BUY, size.reason

            levels = self.risk.calculate_stop_levels(info.price, info.volatility)
            try:
                await self.positions.open_position(
                    token,
                    size.amount,
                    info.price,
                    signal=signal,
                    stop_loss=levels.stop_loss_price,
                    take_profit=levels.take_profit_price,
                )
            except TradingError as e:
                self._log.info("position_not_opened", code=e.code, error=str(e))
                return BUY, e.code
            return BUY, OPENED
        finally:
            clear_context("token")

    def _finish(self, report: CycleReport, started: float) -> None:
        report.duration_sec = monotonic() - started
        self._log.info("cycle_completed", **report.to_dict())
        self.refresh_metrics(report)

    # ------------------------------------------------------------- metrics

    def refresh_metrics(self, report: Optional[CycleReport] = None) -> MetricsSnapshot:
        m = self.metrics
        if report is not None:
            m.last_cycle = report.to_dict()
        m.portfolio = self.portfolio.get_state()
        m.performance = self.portfolio.get_metrics()
        m.open_positions = self.positions.open_count
        m.exposure = self.positions.calculate_exposure(self._last_prices)
        m.orders = self.queue.get_stats()
        signal_metrics = self.strategy.get_metrics()
        m.signals = {k: v for k, v in signal_metrics.items() if k != "recent_signals"}
        m.risk = self.risk.get_status()
        m.circuit_breaker = self.breaker.to_dict()
        m.updated_at = to_iso(utc_now())
        if self.metrics_path is not None:
            try:
                write_metrics(m.to_dict(), self.metrics_path)
            except OSError as e:
                self._log.warning("metrics_persist_failed", error=str(e))
        return m

    # ------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        await self.risk.start()
        self.metrics.running = True

    async def stop(self) -> None:
        self.metrics.running = False
        await self.risk.stop()
        await self.queue.shutdown()
        await self.events.drain()
        self.refresh_metrics()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run cycles every `interval_sec` until `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        await self.start()
        self._log.info("engine_started", environment=self.config.environment, dry_run=self.config.development.dry_run)
        try:
            while not stop_event.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:  # keep the loop alive
                    self._log.error("cycle_unhandled_error", error=str(e))
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.config.cycle.interval_sec)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.stop()
            self._log.info("engine_stopped")


def build_engine(config: TokenTraderConfig) -> TradingEngine:
    """Engine wired for a dry run: simulated market data + simulated fills."""
    if not config.development.dry_run:
        raise ValueError("no live market data provider is configured; set development.dry_run=true")

    rng = random.Random(config.development.seed)
    simulated = SimulatedMarketData(
        config.development.simulated_tokens,
        seed=config.development.seed,
        interval=config.cycle.history_interval,
    )
    cache = TTLCache(default_ttl_sec=config.cache.default_ttl_sec, max_entries=config.cache.max_entries)
    market = CachedMarketData(simulated, cache, price_ttl_sec=config.cache.price_ttl_sec)
    breaker_path = Path(config.storage.metrics_path).with_name("circuit_breaker.json")
    return TradingEngine(
        config,
        market=market,
        journal=JsonlTradeJournal(Path(config.storage.trade_journal_path)),
        breaker=CircuitBreaker(
            max_consecutive_errors=config.cycle.max_consecutive_errors,
            cooldown_sec=config.cycle.circuit_breaker_cooldown_sec,
            state_path=breaker_path,
        ),
        metrics_path=Path(config.storage.metrics_path),
        before_cycle=simulated.advance,
        rng=rng,
    )


async def run_engine(config_path: Optional[Path] = None, *, serve_api: bool = False) -> None:
    config = set_config(load_config(config_path, allow_defaults=True))
    configure_logging(config.log_level, json_logs=config.json_logs)
    log = get_logger("engine")
    log.info("config_loaded", environment=config.environment, sizing_mode=config.risk.sizing_mode)

    engine = build_engine(config)
    set_state(AppState(engine=engine))

    stop_event = asyncio.Event()
    tasks = [asyncio.create_task(engine.run(stop_event), name="engine")]
    server = None
    if serve_api:
        import uvicorn

        from tokentrader.api.server import app

        server = uvicorn.Server(uvicorn.Config(app, host=config.api.host, port=config.api.port, log_level="warning"))
        tasks.append(asyncio.create_task(server.serve(), name="api"))

    try:
        await asyncio.gather(*tasks)
    finally:
        stop_event.set()
        if server is not None:
            server.should_exit = True
        await asyncio.gather(*tasks, return_exceptions=True)
