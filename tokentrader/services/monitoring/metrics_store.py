from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_METRICS_PATH = Path("data/metrics.json")


def write_metrics(data: Dict[str, Any], path: Optional[Path] = None) -> None:
    target = Path(path) if path is not None else DEFAULT_METRICS_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, default=str), encoding="utf-8")
    tmp.replace(target)  # atomic replace


def read_metrics(path: Optional[Path] = None) -> Dict[str, Any]:
    target = Path(path) if path is not None else DEFAULT_METRICS_PATH
    if not target.exists():
        return {"running": False, "message": "metrics not yet available"}
    return json.loads(target.read_text(encoding="utf-8"))
