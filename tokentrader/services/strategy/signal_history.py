"""Rolling record of emitted signals and their outcomes (observational only)."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Set

from tokentrader.infrastructure.utils.timeutils import to_iso, utc_now
from tokentrader.models.trade_models import Signal


PENDING = "PENDING"
CORRECT = "CORRECT"
INCORRECT = "INCORRECT"

_STRENGTHS = ("WEAK", "MEDIUM", "STRONG")


@dataclass
class SignalRecord:
    token: str
    signal: Signal
    outcome: str = PENDING
    profit: Optional[float] = None
    recorded_at: datetime = field(default_factory=utc_now)
    closed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "signal": self.signal.to_dict(),
            "outcome": self.outcome,
            "profit": self.profit,
            "recorded_at": to_iso(self.recorded_at),
            "closed_at": to_iso(self.closed_at),
        }


class SignalHistory:
    def __init__(self, max_size: int = 100) -> None:
        self._records: Deque[SignalRecord] = deque(maxlen=max_size)
        self.total_signals = 0
        self.correct_signals = 0
        self.false_positives = 0
        self._by_strength: Dict[str, Dict[str, int]] = {s: {"total": 0, "correct": 0} for s in _STRENGTHS}
        self._profitable_tokens: Set[str] = set()

    def __len__(self) -> int:
        return len(self._records)

    def track(self, signal: Signal) -> None:
        """Record an actionable signal as PENDING. NONE signals are ignored."""
        if not signal.is_actionable:
            return
        self.total_signals += 1
        self._by_strength.setdefault(signal.strength, {"total": 0, "correct": 0})["total"] += 1
        self._records.append(SignalRecord(token=signal.token, signal=signal))

    def update_outcome(self, token: str, outcome: str, profit: Optional[float] = None) -> Optional[SignalRecord]:
        """Label the oldest PENDING record for token. Returns it, or None if there is none."""
        outcome = outcome.upper()
        if outcome not in (CORRECT, INCORRECT):
            raise ValueError(f"outcome must be {CORRECT} or {INCORRECT}")

        for rec in self._records:
            if rec.token == token and rec.outcome == PENDING:
                break
        else:
            return None

        rec.outcome = outcome
        rec.profit = profit
        rec.closed_at = utc_now()
        if outcome == CORRECT:
            self.correct_signals += 1
            self._by_strength.setdefault(rec.signal.strength, {"total": 0, "correct": 0})["correct"] += 1
            if profit is not None and profit > 0:
                self._profitable_tokens.add(token)
        else:
            self.false_positives += 1
        return rec

    def recent(self, limit: int = 10) -> List[SignalRecord]:
        return list(self._records)[-limit:]

    def metrics(self) -> Dict[str, Any]:
        accuracy = (self.correct_signals / self.total_signals * 100.0) if self.total_signals else 0.0
        strength_accuracy = {
            name.lower(): (v["correct"] / v["total"] * 100.0 if v["total"] else 0.0)
            for name, v in self._by_strength.items()
        }
        return {
            "total_signals": self.total_signals,
            "correct_signals": self.correct_signals,
            "false_positives": self.false_positives,
            "accuracy": accuracy,
            "strength_accuracy": strength_accuracy,
            "profitable_tokens": sorted(self._profitable_tokens),
            "recent_signals": [r.to_dict() for r in self.recent(10)],
        }
