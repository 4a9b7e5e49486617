"""
FastAPI router for real-time recommendation streaming.

Provides:
- WebSocket endpoint for live recommendation updates
- SSE (Server-Sent Events) endpoint for HTTP-only clients
- Stream status endpoint
- Outcome monitor status / control endpoints
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from app.infrastructure.recommendation.outcome_monitor import OutcomeMonitor
from app.infrastructure.recommendation.stream import RecommendationStreamManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

# ── Singletons (initialized by the app lifespan) ─────────────────
_stream_manager: RecommendationStreamManager | None = None
_monitor: OutcomeMonitor | None = None


def set_realtime_components(
    stream_manager: RecommendationStreamManager,
    monitor: OutcomeMonitor | None = None,
) -> None:
    """Called by the app lifespan to inject the singleton instances."""
    global _stream_manager, _monitor
    _stream_manager = stream_manager
    _monitor = monitor


def get_stream_manager() -> RecommendationStreamManager:
    if _stream_manager is None:
        raise RuntimeError(
            "RecommendationStreamManager not initialized. "
            "Ensure the app lifespan starts the realtime components."
        )
    return _stream_manager


# ------------------------------------------------------------------
# WebSocket endpoint
# ------------------------------------------------------------------


@router.websocket("/ws/recommendations")
async def ws_recommendations(websocket: WebSocket) -> None:
    """WebSocket endpoint for live recommendation streaming.

    Protocol (JSON):
        → {"action": "subscribe", "symbols": ["AAPL", "MSFT"]}
        ← {"event": "subscribed", "symbols": ["AAPL", "MSFT"]}

        → {"action": "ping"}
        ← {"event": "pong", "timestamp": "..."}

        ← {"event": "recommendation", "symbol": "AAPL", "data": {...}}
    """
    manager = get_stream_manager()
    await manager.connect(websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            await manager.handle_client_message(websocket, raw)
    except WebSocketDisconnect as exc:
        logger.debug("WebSocket closed by client (code=%s)", exc.code)
    finally:
        manager.disconnect(websocket)


# ------------------------------------------------------------------
# SSE endpoint
# ------------------------------------------------------------------


@router.get(
    "/stream/recommendations",
    summary="Server-Sent Events recommendation stream",
    description="HTTP streaming endpoint for clients that can't use WebSocket.",
)
async def sse_recommendations(
    symbols: Annotated[
        str | None,
        Query(description="Comma-separated ticker symbols to subscribe to"),
    ] = None,
) -> StreamingResponse:
    """SSE endpoint: streams recommendation events as text/event-stream."""
    manager = get_stream_manager()

    filter_symbols: set[str] | None = None
    if symbols:
        filter_symbols = {s.strip().upper() for s in symbols.split(",") if s.strip()}

    return StreamingResponse(
        manager.sse_generator(symbols=filter_symbols),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get(
    "/stream/status",
    summary="Get stream status",
    description="Return connection stats and recent recommendation events.",
)
def stream_status(
    symbol: Annotated[str | None, Query(description="Filter events by symbol")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
) -> dict:
    """Return streaming stats."""
    manager = get_stream_manager()
    return {
        **manager.stats,
        "recent_events": manager.get_recent_events(limit=limit, symbol=symbol),
    }


# ------------------------------------------------------------------
# Outcome monitor
# ------------------------------------------------------------------


@router.get(
    "/monitor/status",
    summary="Get outcome monitor status",
    description="Return the polling state and the last pass summary.",
)
def monitor_status() -> dict:
    """Return outcome monitor status."""
    if _monitor is None:
        return {"running": False, "note": "Outcome monitor not initialized."}
    return _monitor.get_status()


@router.post(
    "/monitor/run",
    summary="Run one outcome pass",
    description="Check every open recommendation against the current quote now.",
)
def monitor_run() -> dict:
    """Trigger an outcome pass on demand."""
    if _monitor is None:
        return {"error": "Outcome monitor not initialized."}

    result = _monitor.run_once()
    logger.info("Manual outcome pass: %d checked", result.checked)
    return {
        "started_at": result.started_at,
        "checked": result.checked,
        "transitions": result.transitions,
        "skipped": result.skipped,
        "duration_seconds": result.duration_seconds,
    }
