"""Time helpers (UTC everywhere)."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def monotonic() -> float:
    return time.monotonic()


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def seconds_since(then: datetime, now: Optional[datetime] = None) -> float:
    """Elapsed seconds between `then` and `now` (defaults to utc_now())."""
    return ((now or utc_now()) - then).total_seconds()
