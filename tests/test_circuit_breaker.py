import json

import pytest

from tokentrader.services.risk.circuit_breaker import CircuitBreaker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_trips_after_consecutive_failures(clock):
    breaker = CircuitBreaker(max_consecutive_errors=3, cooldown_sec=60, clock=clock)
    assert not breaker.record_failure()
    assert not breaker.record_failure()
    assert breaker.record_failure("cycle", RuntimeError("boom"))
    assert breaker.is_open()
    assert "consecutive_errors=3" in breaker.state.reason


def test_success_resets_the_streak(clock):
    breaker = CircuitBreaker(max_consecutive_errors=2, clock=clock)
    breaker.record_failure()
    breaker.record_success()
    assert breaker.consecutive_errors == 0
    assert not breaker.record_failure()
    assert not breaker.is_open()


def test_auto_resume_after_cooldown(clock):
    breaker = CircuitBreaker(max_consecutive_errors=1, cooldown_sec=60, clock=clock)
    breaker.record_failure()
    clock.now += 30
    assert breaker.is_open()
    assert breaker.remaining_cooldown() == pytest.approx(30.0)

    clock.now += 30
    assert not breaker.is_open()
    assert breaker.consecutive_errors == 0
    assert breaker.state.reason == "cooldown_elapsed"


def test_zero_cooldown_needs_manual_reset(clock):
    breaker = CircuitBreaker(cooldown_sec=0, clock=clock)
    breaker.trip("operator")
    clock.now += 10_000
    assert breaker.is_open()
    breaker.reset()
    assert not breaker.is_open()
    assert breaker.to_dict()["reason"] == "manual_reset"


def test_state_survives_restart(tmp_path, clock):
    path = tmp_path / "breaker.json"
    breaker = CircuitBreaker(max_consecutive_errors=1, cooldown_sec=60, state_path=path, clock=clock)
    breaker.record_failure("execution_queue")

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["open"] is True

    restored = CircuitBreaker(max_consecutive_errors=1, cooldown_sec=60, state_path=path, clock=clock)
    assert restored.is_open()
    assert restored.remaining_cooldown() == pytest.approx(60.0)
    assert restored.state.reason.startswith("execution_queue")
