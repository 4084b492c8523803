import pytest

from tokentrader.models.trade_models import BUY, NONE, SELL, Signal
from tokentrader.services.strategy.signal_history import CORRECT, INCORRECT, PENDING, SignalHistory


def make(token, kind=BUY, strength="STRONG", confidence=0.9):
    return Signal(token=token, type=kind, confidence=confidence, strength=strength)


def test_none_signals_are_ignored():
    history = SignalHistory()
    history.track(make("SOL", NONE))
    assert len(history) == 0
    assert history.total_signals == 0


def test_outcome_labels_oldest_pending_record():
    history = SignalHistory()
    history.track(make("SOL"))
    history.track(make("SOL", SELL, "MEDIUM"))

    first = history.update_outcome("SOL", "correct", profit=5.0)
    assert first.outcome == CORRECT
    assert first.signal.type == BUY

    second = history.update_outcome("SOL", INCORRECT)
    assert second.signal.type == SELL
    assert history.update_outcome("SOL", CORRECT) is None


def test_unknown_outcome_is_rejected():
    history = SignalHistory()
    history.track(make("SOL"))
    with pytest.raises(ValueError):
        history.update_outcome("SOL", PENDING)


def test_metrics_accuracy_by_strength():
    history = SignalHistory()
    history.track(make("SOL", strength="STRONG"))
    history.track(make("JUP", strength="STRONG"))
    history.track(make("RAY", strength="WEAK", confidence=0.5))
    history.update_outcome("SOL", CORRECT, profit=3.0)
    history.update_outcome("JUP", INCORRECT, profit=-1.0)

    metrics = history.metrics()
    assert metrics["total_signals"] == 3
    assert metrics["correct_signals"] == 1
    assert metrics["false_positives"] == 1
    assert metrics["accuracy"] == pytest.approx(100.0 / 3)
    assert metrics["strength_accuracy"]["strong"] == pytest.approx(50.0)
    assert metrics["strength_accuracy"]["weak"] == 0.0
    assert metrics["profitable_tokens"] == ["SOL"]
    assert len(metrics["recent_signals"]) == 3


def test_history_is_bounded():
    history = SignalHistory(max_size=2)
    for token in ("A", "B", "C"):
        history.track(make(token))
    assert len(history) == 2
    assert [r.token for r in history.recent()] == ["B", "C"]
    assert history.total_signals == 3
