"""In-memory engine snapshot for the API + metrics file."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class CycleReport:
    started_at: str
    duration_sec: float = 0.0
    skipped: bool = False
    skip_reason: Optional[str] = None
    positions_checked: int = 0
    positions_closed: int = 0
    tokens_scanned: int = 0
    signals: Dict[str, int] = field(default_factory=lambda: {"BUY": 0, "SELL": 0, "NONE": 0})
    positions_opened: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    errors: int = 0

    def reject(self, reason: str) -> None:
        self.rejections[reason] = self.rejections.get(reason, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsSnapshot:
    running: bool = False
    environment: str = "DEMO"
    dry_run: bool = True
    cycles: int = 0
    cycles_skipped: int = 0
    last_cycle: Optional[Dict[str, Any]] = None
    portfolio: Dict[str, Any] = field(default_factory=dict)
    performance: Dict[str, Any] = field(default_factory=dict)
    open_positions: int = 0
    exposure: float = 0.0
    orders: Dict[str, Any] = field(default_factory=dict)
    signals: Dict[str, Any] = field(default_factory=dict)
    risk: Dict[str, Any] = field(default_factory=dict)
    circuit_breaker: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
