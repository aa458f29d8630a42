"""
FastAPI server for the arbitrage scanner. Runs as a daemon thread.

Query endpoints read the scheduler's latest snapshot. Alert endpoints are
scoped by the X-Owner-Id header. SSE pushes a summary of every cycle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import asdict, fields, is_dataclass
from enum import Enum
from typing import Any, Literal

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from monitor.scheduler import ScanScheduler
from report.store import AlertStore
from scanner.errors import ScanAborted, ScannerError
from scanner.models import (
    Direction,
    MarketRef,
    MatchCandidate,
    ScanSnapshot,
)
from scanner.profit import compute_profit, project_trade
from scanner.query import ScanQuery

logger = logging.getLogger(__name__)

# SSE subscribers: (event loop, queue) per connected client
_sse_queues: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
_sse_lock = threading.Lock()


def to_jsonable(obj: Any) -> Any:
    """Dataclasses/enums/sets/tuples -> plain JSON types."""
    if isinstance(obj, MatchCandidate):
        return candidate_summary(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(to_jsonable(v) for v in obj)
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    return obj


def candidate_summary(c: MatchCandidate) -> dict[str, Any]:
    return {
        "platform_a_id": c.market_a.external_id,
        "platform_a_title": c.market_a.raw_title,
        "platform_b_id": c.market_b.external_id,
        "platform_b_title": c.market_b.raw_title,
        "score": c.score,
        "passed": c.passed,
        "entities_a": list(c.entities_a),
        "entities_b": list(c.entities_b),
        "entity_mismatch": sorted(c.entity_mismatch),
        "rationale": c.rationale,
    }


def cycle_summary(snapshot: ScanSnapshot) -> dict[str, Any]:
    best = snapshot.opportunities[0] if snapshot.opportunities else None
    return {
        "cycle": snapshot.cycle,
        "scanned_at": snapshot.scanned_at,
        "stats": to_jsonable(snapshot.stats),
        "warnings": [w.code for w in snapshot.warnings],
        "best_spread_pct": best.spread_pct if best else None,
        "best_event_title": best.event_title if best else None,
    }


def _offer(q: asyncio.Queue, data: dict[str, Any]) -> None:
    try:
        q.put_nowait(data)
    except asyncio.QueueFull:
        logger.debug("SSE queue full, dropping cycle summary")


def notify_cycle(summary: dict[str, Any]) -> None:
    """Push a cycle summary to all SSE subscribers. Thread-safe."""
    with _sse_lock:
        stale: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        for loop, q in _sse_queues:
            try:
                loop.call_soon_threadsafe(_offer, q, summary)
            except RuntimeError:
                # event loop already closed
                stale.append((loop, q))
        for entry in stale:
            _sse_queues.remove(entry)


class AlertCreate(BaseModel):
    market_ref: str = "*"
    direction: Literal["above", "below"] = "above"
    target_spread_pct: float = Field(ge=0)
    is_active: bool = True


class AlertUpdate(BaseModel):
    is_active: bool | None = None
    target_spread_pct: float | None = Field(default=None, ge=0)
    direction: Literal["above", "below"] | None = None


class ProfitRequest(BaseModel):
    buy_price: float = Field(gt=0, description="Buy price in cents")
    sell_price: float = Field(ge=0, description="Sell price in cents")
    stake: float = Field(gt=0)
    fee_pct_per_platform: float = Field(default=1.0, ge=0)


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "X-Owner-Id header required"}, status_code=401)


def create_app(scheduler: ScanScheduler, store: AlertStore) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(title="Cross-Platform Arbitrage Scanner", docs_url="/docs")

    scheduler.subscribe(lambda snap: notify_cycle(cycle_summary(snap)))

    # ── Opportunities ──

    @app.get("/api/opportunities")
    def get_opportunities(
        category: str | None = None,
        min_spread: float = Query(0.0, ge=0.0),
        min_similarity: float | None = Query(None, ge=0.0, le=100.0),
        limit: int = Query(50, ge=1, le=1000),
        debug: bool = False,
    ):
        query = ScanQuery(
            category=category,
            min_spread=min_spread,
            min_similarity=min_similarity,
            limit=limit,
            debug=debug,
        )
        body = to_jsonable(scheduler.query(query))
        body["scheduler_state"] = scheduler.state.value
        error = scheduler.last_error
        body["error"] = (
            {"message": str(error), "retryable": bool(getattr(error, "retryable", False))}
            if error else None
        )
        return body

    @app.post("/api/refresh")
    def refresh():
        try:
            snapshot = scheduler.refresh()
        except ScanAborted as e:
            return JSONResponse({"error": str(e), "retryable": True}, status_code=409)
        except ScannerError as e:
            return JSONResponse(
                {"error": str(e), "retryable": bool(getattr(e, "retryable", False))},
                status_code=503,
            )
        return cycle_summary(snapshot)

    @app.get("/api/status")
    def status():
        error = scheduler.last_error
        return {
            "state": scheduler.state.value,
            "interval_sec": scheduler.interval_sec,
            "last_error": str(error) if error else None,
            "session": scheduler.tracker.summary(),
        }

    # ── Profit calculator ──

    @app.post("/api/profit")
    def profit(req: ProfitRequest):
        estimate = compute_profit(req.buy_price, req.sell_price, req.stake)
        projection = project_trade(
            req.buy_price, req.sell_price, req.stake, req.fee_pct_per_platform,
        )
        return {
            **asdict(estimate),
            "projection": {**asdict(projection), "is_profitable": projection.is_profitable},
        }

    # ── Alerts ──

    @app.get("/api/alerts")
    def list_alerts(
        active_only: bool = False,
        x_owner_id: str | None = Header(default=None),
    ):
        if not x_owner_id:
            return _unauthorized()
        return to_jsonable(store.list_alerts(x_owner_id, active_only=active_only))

    @app.post("/api/alerts", status_code=201)
    def create_alert(body: AlertCreate, x_owner_id: str | None = Header(default=None)):
        if not x_owner_id:
            return _unauthorized()
        try:
            ref = MarketRef.parse(body.market_ref)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=422)
        alert = store.create_alert(
            x_owner_id, ref, Direction(body.direction), body.target_spread_pct,
            is_active=body.is_active,
        )
        return to_jsonable(alert)

    @app.patch("/api/alerts/{alert_id}")
    def update_alert(
        alert_id: int,
        body: AlertUpdate,
        x_owner_id: str | None = Header(default=None),
    ):
        if not x_owner_id:
            return _unauthorized()
        alert = store.update_alert(
            x_owner_id,
            alert_id,
            is_active=body.is_active,
            target_spread_pct=body.target_spread_pct,
            direction=Direction(body.direction) if body.direction else None,
        )
        if alert is None:
            return JSONResponse({"error": "Alert not found"}, status_code=404)
        return to_jsonable(alert)

    @app.post("/api/alerts/{alert_id}/toggle")
    def toggle_alert(alert_id: int, x_owner_id: str | None = Header(default=None)):
        if not x_owner_id:
            return _unauthorized()
        alert = store.toggle_alert(x_owner_id, alert_id)
        if alert is None:
            return JSONResponse({"error": "Alert not found"}, status_code=404)
        return to_jsonable(alert)

    @app.delete("/api/alerts/{alert_id}")
    def delete_alert(alert_id: int, x_owner_id: str | None = Header(default=None)):
        if not x_owner_id:
            return _unauthorized()
        if not store.delete_alert(x_owner_id, alert_id):
            return JSONResponse({"error": "Alert not found"}, status_code=404)
        return {"deleted": alert_id}

    # ── Triggered records ──

    @app.get("/api/triggered")
    def list_triggered(
        alert_id: int | None = None,
        limit: int = Query(100, ge=1, le=1000),
        x_owner_id: str | None = Header(default=None),
    ):
        if not x_owner_id:
            return _unauthorized()
        return to_jsonable(store.list_triggered(x_owner_id, alert_id=alert_id, limit=limit))

    @app.delete("/api/triggered/{triggered_id}")
    def dismiss_triggered(triggered_id: int, x_owner_id: str | None = Header(default=None)):
        if not x_owner_id:
            return _unauthorized()
        if not store.dismiss_triggered(x_owner_id, triggered_id):
            return JSONResponse({"error": "Triggered alert not found"}, status_code=404)
        return {"dismissed": triggered_id}

    # ── SSE ──

    @app.get("/api/live")
    async def live_stream(request: Request):
        q: asyncio.Queue = asyncio.Queue(maxsize=100)
        entry = (asyncio.get_running_loop(), q)
        with _sse_lock:
            _sse_queues.append(entry)

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        data = await asyncio.wait_for(q.get(), timeout=30.0)
                        yield f"data: {json.dumps(data)}\n\n"
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
            finally:
                with _sse_lock:
                    if entry in _sse_queues:
                        _sse_queues.remove(entry)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


def start_server(
    scheduler: ScanScheduler,
    store: AlertStore,
    host: str = "0.0.0.0",
    port: int = 8787,
) -> threading.Thread:
    """Start FastAPI in a daemon thread. Returns the thread."""
    import uvicorn

    app = create_app(scheduler, store)

    def _run():
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )

    thread = threading.Thread(target=_run, daemon=True, name="report-server")
    thread.start()
    logger.info("API server started at http://%s:%d", host, port)
    return thread
