"""Append-only journal of closed trades (one JSON record per trade)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Protocol


JsonDict = Dict[str, Any]


class TradeJournal(Protocol):
    def append(self, record: JsonDict) -> None: ...

    def read_all(self) -> List[JsonDict]: ...


class JsonlTradeJournal:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: JsonDict) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def read_all(self) -> List[JsonDict]:
        if not self._path.exists():
            return []
        out: List[JsonDict] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line:
                out.append(json.loads(line))
        return out


class MemoryTradeJournal:
    def __init__(self) -> None:
        self.records: List[JsonDict] = []

    def append(self, record: JsonDict) -> None:
        self.records.append(dict(record))

    def read_all(self) -> List[JsonDict]:
        return list(self.records)
