from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tokentrader.api.state import AppState, get_state
from tokentrader.infrastructure.utils.config import get_config
from tokentrader.services.monitoring.metrics_store import read_metrics

app = FastAPI(title="Token Trader API", version="0.1.0")


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_state() -> AppState:
    state = get_state()
    if state is None:
        raise HTTPException(status_code=503, detail="engine not running in this process")
    return state


@app.get("/health")
async def health() -> Dict[str, Any]:
    state = get_state()
    return {"ok": True, "engine": state is not None and state.engine.metrics.running}


@app.get("/metrics")
async def metrics() -> Dict[str, Any]:
    state = get_state()
    if state is None:
        # engine runs in another process: serve its last snapshot
        return read_metrics(Path(get_config().storage.metrics_path))
    return state.engine.refresh_metrics().to_dict()


@app.get("/portfolio")
async def portfolio() -> Dict[str, Any]:
    engine = _require_state().engine
    return {
        "state": engine.portfolio.get_state(),
        "metrics": engine.portfolio.get_metrics(),
        "daily": engine.portfolio.get_daily_stats(),
    }


@app.get("/positions")
async def positions() -> List[Dict[str, Any]]:
    return _require_state().engine.positions.get_open_positions()


@app.get("/positions/closed")
async def closed_positions(limit: int = Query(default=20, ge=1, le=1000)) -> List[Dict[str, Any]]:
    return _require_state().engine.positions.get_closed_positions(limit)


@app.get("/signals")
async def signals() -> Dict[str, Any]:
    return _require_state().engine.strategy.get_metrics()


@app.get("/orders")
async def orders(limit: int = Query(default=20, ge=1, le=1000)) -> Dict[str, Any]:
    queue = _require_state().engine.queue
    return {
        "stats": queue.get_stats(),
        "pending": queue.get_pending_transactions(),
        "history": queue.get_transaction_history(limit),
    }


@app.get("/risk")
async def risk() -> Dict[str, Any]:
    engine = _require_state().engine
    return {**engine.risk.get_status(), "circuit_breaker": engine.breaker.to_dict()}


class ResetPayload(BaseModel):
    reason: str = "manual_reset"


@app.post("/circuit-breaker/reset")
async def reset_circuit_breaker(payload: Optional[ResetPayload] = None) -> Dict[str, Any]:
    breaker = _require_state().engine.breaker
    breaker.reset(payload.reason if payload is not None else "manual_reset")
    return breaker.to_dict()
