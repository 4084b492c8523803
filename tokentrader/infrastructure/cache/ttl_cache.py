"""Key -> value cache with per-entry expiry. Injected into consumers, never global."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from tokentrader.infrastructure.utils.timeutils import monotonic


@dataclass
class _Entry:
    value: Any
    expires_at: float


_MISSING = object()


class TTLCache:
    """Expired entries are dropped lazily on read and by `sweep()`.
    When full, the least recently used entry is evicted."""

    def __init__(
        self,
        *,
        default_ttl_sec: float = 300.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if default_ttl_sec <= 0:
            raise ValueError("default_ttl_sec must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.default_ttl_sec = float(default_ttl_sec)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._data: "OrderedDict[Hashable, _Entry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.expires_at <= self._clock():
            del self._data[key]
            self.misses += 1
            return default
        self._data.move_to_end(key)
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_sec: Optional[float] = None) -> None:
        ttl = self.default_ttl_sec if ttl_sec is None else float(ttl_sec)
        if key in self._data:
            del self._data[key]
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)
            self.evictions += 1

    def delete(self, key: Hashable) -> bool:
        return self._data.pop(key, None) is not None

    def clear(self) -> None:
        self._data.clear()

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in expired:
            del self._data[k]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "entries": len(self._data),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
