"""Circuit breaker for the trading cycle (consecutive errors + cooldown, optional persistence)."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from tokentrader.infrastructure.logging.logging import get_logger
from tokentrader.infrastructure.utils.timeutils import monotonic, utc_now


@dataclass
class CircuitBreakerState:
    open: bool = False
    reason: str = ""
    consecutive_errors: int = 0
    opened_at_iso: Optional[str] = None


class CircuitBreaker:
    """Opens after `max_consecutive_errors` failures in a row and closes again
    once `cooldown_sec` has elapsed. A manual trip stays open until reset
    when `cooldown_sec` is 0.
    """

    def __init__(
        self,
        *,
        max_consecutive_errors: int = 3,
        cooldown_sec: float = 300.0,
        state_path: Optional[Path] = None,
        clock=monotonic,
    ) -> None:
        self.max_consecutive_errors = int(max_consecutive_errors)
        self.cooldown_sec = float(cooldown_sec)
        self._path = state_path
        self._clock = clock
        self._state = CircuitBreakerState()
        self._opened_at: Optional[float] = None
        self._log = get_logger("circuit_breaker")
        self.load()

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def consecutive_errors(self) -> int:
        return self._state.consecutive_errors

    def load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        data = json.loads(self._path.read_text(encoding="utf-8"))
        self._state = CircuitBreakerState(
            open=bool(data.get("open", False)),
            reason=str(data.get("reason", "")),
            consecutive_errors=int(data.get("consecutive_errors", 0)),
            opened_at_iso=data.get("opened_at_iso"),
        )
        if self._state.open:
            # cooldown restarts from process start
            self._opened_at = self._clock()

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(self._state), indent=2, sort_keys=True), encoding="utf-8")

    def is_open(self) -> bool:
        """True while tripped. Auto-resumes after the cooldown."""
        if not self._state.open:
            return False
        if self.cooldown_sec > 0 and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.cooldown_sec:
                self.reset("cooldown_elapsed")
                return False
        return True

    def remaining_cooldown(self) -> float:
        if not self._state.open or self._opened_at is None or self.cooldown_sec <= 0:
            return 0.0
        return max(0.0, self.cooldown_sec - (self._clock() - self._opened_at))

    def record_success(self) -> None:
        if self._state.consecutive_errors:
            self._state.consecutive_errors = 0
            self.save()

    def record_failure(self, source: str = "cycle", error: Optional[BaseException] = None) -> bool:
        """Count one failure. Returns True when this failure tripped the breaker."""
        self._state.consecutive_errors += 1
        self._log.warning(
            "failure_recorded",
            source=source,
            consecutive_errors=self._state.consecutive_errors,
            limit=self.max_consecutive_errors,
            error=str(error) if error is not None else None,
        )
        if not self._state.open and self._state.consecutive_errors >= self.max_consecutive_errors:
            self.trip(f"{source}: consecutive_errors={self._state.consecutive_errors}")
            return True
        self.save()
        return False

    def trip(self, reason: str) -> None:
        if self._state.open:
            return
        self._state.open = True
        self._state.reason = reason
        self._state.opened_at_iso = utc_now().isoformat()
        self._opened_at = self._clock()
        self.save()
        self._log.error("circuit_breaker_open", reason=reason, cooldown_sec=self.cooldown_sec)

    def reset(self, reason: str = "manual_reset") -> None:
        was_open = self._state.open
        self._state = CircuitBreakerState(open=False, reason=reason)
        self._opened_at = None
        self.save()
        if was_open:
            self._log.info("circuit_breaker_closed", reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self._state), "remaining_cooldown_sec": round(self.remaining_cooldown(), 3)}
