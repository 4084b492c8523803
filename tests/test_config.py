import pytest

from tokentrader.infrastructure.utils.config import (
    IndicatorConfig,
    RiskConfig,
    TokenTraderConfig,
    load_config,
)


def write_yaml(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_are_consistent():
    config = TokenTraderConfig()
    assert config.environment == "DEMO"
    assert config.risk.sizing_mode == "fixed"
    assert config.execution.max_retries == 3
    assert config.risk.market_states["VOLATILE"].max_exposure_pct == 40.0


def test_yaml_sections_are_loaded(tmp_path):
    path = write_yaml(
        tmp_path,
        "environment: demo\n"
        "risk:\n  max_exposure_pct: 45\n  sizing_mode: Volatility\n"
        "cycle:\n  batch_size: 5\n",
    )
    config = TokenTraderConfig.from_yaml(path)
    assert config.environment == "DEMO"
    assert config.risk.max_exposure_pct == 45.0
    assert config.risk.sizing_mode == "volatility"
    assert config.cycle.batch_size == 5
    assert config.strategy.rsi_oversold == 30.0


def test_env_overrides_yaml(tmp_path, monkeypatch):
    path = write_yaml(tmp_path, "risk:\n  sizing_mode: fixed\n")
    monkeypatch.setenv("RISK__SIZING_MODE", "kelly")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = TokenTraderConfig.from_yaml(path)
    assert config.risk.sizing_mode == "kelly"
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "text",
    [
        "risk:\n  sizing_mode: martingale\n",
        "indicators:\n  macd_fast: 26\n  macd_slow: 12\n",
        "risk:\n  market_states:\n    SIDEWAYS:\n      max_exposure_pct: 10\n",
        "- not\n- a mapping\n",
        "risk: [unclosed\n",
    ],
)
def test_invalid_yaml_is_rejected(tmp_path, text):
    with pytest.raises(ValueError):
        TokenTraderConfig.from_yaml(write_yaml(tmp_path, text))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        TokenTraderConfig.from_yaml(tmp_path / "absent.yaml")
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_with_overrides_returns_new_snapshot():
    base = TokenTraderConfig()
    changed = base.with_overrides("execution", slippage_tolerance_pct=2.0)
    assert changed.execution.slippage_tolerance_pct == 2.0
    assert base.execution.slippage_tolerance_pct == 1.0

    with pytest.raises(KeyError):
        base.with_overrides("nope", x=1)
    with pytest.raises(ValueError):
        base.with_overrides("risk", max_drawdown_pct=0)


def test_section_validators():
    with pytest.raises(ValueError):
        IndicatorConfig(ema_short=200, ema_long=50)
    with pytest.raises(ValueError):
        RiskConfig(base_trade_size_pct=10, max_position_size_pct=5)
