from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from tokentrader.app.engine import TradingEngine


@dataclass
class AppState:
    engine: "TradingEngine"


_state: Optional[AppState] = None


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def get_state() -> Optional[AppState]:
    return _state
