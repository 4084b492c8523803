"""Configuration management for the token trader.

Rules:
- YAML provides defaults for every section.
- Environment variables (and .env) override YAML, e.g. RISK__SIZING_MODE=kelly.
- A loaded config is an immutable snapshot. Runtime changes produce a new
  snapshot through `with_overrides`; nothing mutates a config in place.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SIZING_MODES = ("fixed", "kelly", "volatility", "adaptive")
MARKET_STATES = ("NORMAL", "VOLATILE", "BEARISH", "BULLISH")


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class IndicatorConfig(_Section):
    """Periods used by the indicator engine."""

    rsi_period: int = Field(default=14, ge=2, le=100)
    macd_fast: int = Field(default=12, ge=2, le=100)
    macd_slow: int = Field(default=26, ge=3, le=200)
    macd_signal: int = Field(default=9, ge=2, le=100)
    bollinger_period: int = Field(default=20, ge=2, le=200)
    bollinger_std_dev: float = Field(default=2.0, gt=0, le=5.0)
    ema_short: int = Field(default=50, ge=2, le=500)
    ema_long: int = Field(default=200, ge=3, le=1000)
    volume_sma_period: int = Field(default=10, ge=2, le=200)

    @field_validator("macd_slow")
    @classmethod
    def validate_macd_periods(cls, v: int, info) -> int:
        if "macd_fast" in info.data and v <= info.data["macd_fast"]:
            raise ValueError("macd_slow must be greater than macd_fast")
        return v

    @field_validator("ema_long")
    @classmethod
    def validate_ema_periods(cls, v: int, info) -> int:
        if "ema_short" in info.data and v <= info.data["ema_short"]:
            raise ValueError("ema_long must be greater than ema_short")
        return v


class StrategyConfig(_Section):
    """Weights and thresholds of the momentum signal generator."""

    rsi_oversold: float = Field(default=30.0, ge=5.0, le=50.0)
    rsi_overbought: float = Field(default=70.0, ge=50.0, le=95.0)
    min_confidence: float = Field(default=0.8, ge=0.0, le=5.0, description="BUY/SELL threshold on summed weights")
    volume_threshold: float = Field(default=1.2, gt=0)
    volume_lookback: int = Field(default=24, ge=2, le=1000)
    short_window: int = Field(default=10, ge=3, le=100)
    medium_window: int = Field(default=20, ge=3, le=200)
    long_window: int = Field(default=50, ge=3, le=500)
    trend_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    sr_proximity_pct: float = Field(default=2.0, ge=0.0, le=20.0)
    momentum_change_pct: float = Field(default=5.0, ge=0.0, le=100.0)
    divergence_lookback: int = Field(default=10, ge=3, le=100)
    divergence_change_pct: float = Field(default=5.0, ge=0.0, le=100.0)

    persistence_window_sec: float = Field(default=3600.0, ge=0)
    persistence_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    contrary_penalty: float = Field(default=0.7, gt=0.0, le=1.0)
    agreement_boost: float = Field(default=1.1, ge=1.0, le=2.0)

    min_liquidity: float = Field(default=100_000.0, ge=0)
    min_volume_24h: float = Field(default=50_000.0, ge=0)
    max_price_change_24h: float = Field(default=30.0, gt=0)

    min_data_points: int = Field(default=30, ge=2)
    history_size: int = Field(default=100, ge=1, le=100_000)


class MarketStatePreset(_Section):
    """Overwrites applied when the market state changes (None = configured value)."""

    max_exposure_pct: Optional[float] = Field(default=None, gt=0, le=100)
    base_trade_size_pct: Optional[float] = Field(default=None, gt=0, le=100)


def _default_market_states() -> Dict[str, MarketStatePreset]:
    return {
        "NORMAL": MarketStatePreset(),
        "VOLATILE": MarketStatePreset(max_exposure_pct=40.0, base_trade_size_pct=1.0),
        "BEARISH": MarketStatePreset(max_exposure_pct=30.0, base_trade_size_pct=1.0),
        "BULLISH": MarketStatePreset(),
    }


class RiskConfig(_Section):
    """Risk limits and position sizing. All *_pct values are percentages (5 = 5%)."""

    max_drawdown_pct: float = Field(default=15.0, gt=0, le=100)
    max_daily_loss_pct: float = Field(default=5.0, gt=0, le=100)
    max_exposure_pct: float = Field(default=60.0, gt=0, le=100)
    base_trade_size_pct: float = Field(default=2.0, gt=0, le=100)
    max_position_size_pct: float = Field(default=5.0, gt=0, le=100)
    sizing_mode: str = Field(default="fixed")

    max_volatility: float = Field(default=50.0, gt=0)
    volatility_multiplier: float = Field(default=1.0, ge=0)
    adaptive_capital_threshold: float = Field(default=10_000.0, gt=0)

    min_liquidity: float = Field(default=50_000.0, ge=0)
    max_token_volatility: float = Field(default=50.0, gt=0)
    min_confidence: float = Field(default=0.65, ge=0.0, le=1.0)

    stop_loss_pct: float = Field(default=5.0, gt=0, le=100)
    take_profit_pct: float = Field(default=15.0, gt=0, le=1000)
    max_consecutive_losses: int = Field(default=5, ge=1, le=100)
    daily_reset_check_sec: float = Field(default=3600.0, gt=0)

    market_states: Dict[str, MarketStatePreset] = Field(default_factory=_default_market_states)

    @field_validator("sizing_mode")
    @classmethod
    def validate_sizing_mode(cls, v: str) -> str:
        if str(v).lower() not in SIZING_MODES:
            raise ValueError(f"sizing_mode must be one of: {list(SIZING_MODES)}")
        return str(v).lower()

    @field_validator("max_position_size_pct")
    @classmethod
    def validate_max_position(cls, v: float, info) -> float:
        if "base_trade_size_pct" in info.data and v < info.data["base_trade_size_pct"]:
            raise ValueError("max_position_size_pct must be >= base_trade_size_pct")
        return v

    @field_validator("market_states")
    @classmethod
    def validate_market_states(cls, v: Dict[str, MarketStatePreset]) -> Dict[str, MarketStatePreset]:
        out = _default_market_states()
        for name, preset in v.items():
            key = str(name).upper()
            if key not in MARKET_STATES:
                raise ValueError(f"unknown market state: {name}")
            out[key] = preset
        return out


class ExecutionConfig(_Section):
    """Execution queue and simulated fill settings."""

    concurrency_limit: int = Field(default=3, ge=1, le=64)
    transaction_delay_sec: float = Field(default=1.0, ge=0)
    timeout_sec: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=20, description="Executor retries after the first attempt")
    retry_base_delay_sec: float = Field(default=1.0, ge=0)
    retry_factor: float = Field(default=2.0, ge=1.0)
    retry_max_delay_sec: float = Field(default=5.0, ge=0)
    slippage_tolerance_pct: float = Field(default=1.0, ge=0, le=50)
    fee_rate: float = Field(default=0.001, ge=0, le=0.1)
    simulated_delay_sec: float = Field(default=0.5, ge=0)
    simulated_price_noise_pct: float = Field(default=0.5, ge=0, le=10)
    history_size: int = Field(default=100, ge=1, le=100_000)


class PositionConfig(_Section):
    max_open_positions: int = Field(default=3, ge=1, le=1000)
    stop_loss_pct: float = Field(default=5.0, gt=0, le=100)
    take_profit_pct: float = Field(default=15.0, gt=0, le=1000)
    closed_history_size: int = Field(default=100, ge=1, le=100_000)


class PortfolioConfig(_Section):
    initial_capital: float = Field(default=10_000.0, gt=0)
    base_asset: str = Field(default="USD")
    metrics_cache_ttl_sec: float = Field(default=5.0, ge=0)
    history_size: int = Field(default=1000, ge=1)


class CycleConfig(_Section):
    """Outer loop: batching, pacing and the circuit breaker."""

    interval_sec: float = Field(default=60.0, gt=0)
    batch_size: int = Field(default=3, ge=1, le=100)
    batch_pause_sec: float = Field(default=1.0, ge=0)
    max_consecutive_errors: int = Field(default=3, ge=1, le=100)
    circuit_breaker_cooldown_sec: float = Field(default=300.0, ge=0)
    history_hours: int = Field(default=24, ge=1, le=24 * 30)
    history_interval: str = Field(default="15m")

    @field_validator("history_interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        if str(v) not in {"1m", "5m", "15m", "1h", "4h", "1d"}:
            raise ValueError("history_interval must be one of 1m, 5m, 15m, 1h, 4h, 1d")
        return str(v)


class CacheConfig(_Section):
    default_ttl_sec: float = Field(default=300.0, gt=0)
    price_ttl_sec: float = Field(default=30.0, gt=0)
    max_entries: int = Field(default=1000, ge=1)


class StorageConfig(_Section):
    trade_journal_path: str = Field(default="data/trades.jsonl")
    metrics_path: str = Field(default="data/metrics.json")


class APIConfig(_Section):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])


class DevelopmentConfig(_Section):
    dry_run: bool = Field(default=True, description="Use simulated market data and fills")
    simulated_tokens: List[str] = Field(default=["SOL", "BONK", "JUP", "RAY", "WIF"])
    seed: Optional[int] = Field(default=None)


class TokenTraderConfig(BaseSettings):
    """Root configuration snapshot."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    environment: str = Field(default="DEMO")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True)

    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    positions: PositionConfig = Field(default_factory=PositionConfig)
    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    cycle: CycleConfig = Field(default_factory=CycleConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    development: DevelopmentConfig = Field(default_factory=DevelopmentConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if str(v).upper() not in {"DEMO", "LIVE"}:
            raise ValueError("Environment must be 'DEMO' or 'LIVE'")
        return str(v).upper()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "TokenTraderConfig":
        """Parse YAML as the base layer; env vars (SECTION__FIELD) win over it."""
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping")

        merged = _deep_merge(data, _env_overrides(cls.model_fields.keys()))
        try:
            # init kwargs have priority over env in pydantic-settings; the env
            # layer is already merged above
            return cls(**merged)
        except ValidationError as e:
            raise ValueError(f"Configuration validation error: {e}")

    def with_overrides(self, section: Optional[str] = None, **values: Any) -> "TokenTraderConfig":
        """Return a new validated snapshot with `values` applied to `section` (or the root)."""
        data = self.model_dump()
        if section is None:
            data.update(values)
        else:
            if section not in data or not isinstance(data[section], dict):
                raise KeyError(f"unknown config section: {section}")
            data[section] = {**data[section], **values}
        return type(self).model_validate(data)


def _env_overrides(fields: Any) -> Dict[str, Any]:
    """Collect SECTION__FIELD env vars for known root fields."""
    out: Dict[str, Any] = {}
    known = {str(f).upper(): str(f) for f in fields}
    for key, value in os.environ.items():
        parts = key.split("__")
        root = known.get(parts[0].upper())
        if root is None:
            continue
        if len(parts) == 1:
            out[root] = value
            continue
        node = out.setdefault(root, {})
        if not isinstance(node, dict):
            continue
        for p in parts[1:-1]:
            node = node.setdefault(p.lower(), {})
        node[parts[-1].lower()] = value
    return out


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(config_path: Optional[Path] = None, *, allow_defaults: bool = False) -> TokenTraderConfig:
    """Load configuration from YAML + .env (env wins)."""

    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            if allow_defaults:
                return TokenTraderConfig()
            raise FileNotFoundError("No configuration file found. Create config/default.yaml or specify config path.")

    return TokenTraderConfig.from_yaml(config_path)


# Global config snapshot
_config: Optional[TokenTraderConfig] = None


def get_config() -> TokenTraderConfig:
    global _config
    if _config is None:
        _config = load_config(allow_defaults=True)
    return _config


def set_config(config: TokenTraderConfig) -> TokenTraderConfig:
    global _config
    _config = config
    return _config


def reload_config(config_path: Optional[Path] = None) -> TokenTraderConfig:
    return set_config(load_config(config_path, allow_defaults=True))
