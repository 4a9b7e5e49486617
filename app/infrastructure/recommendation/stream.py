"""
WebSocket & SSE recommendation stream manager.

Implements the RecommendationPublisher port. Pushes a recommendation
to subscribers only when it changes what a consumer would act on
(action, levels, size, confidence or expiry); a newer recommendation for
the same symbol supersedes the previous one.

Architecture:
    GenerateRecommendationUseCase ──▶ RecommendationStreamManager.publish()
                                          │
                          ┌───────────────┴───────────────┐
                          │ WebSocket clients (direct)     │
                          │ SSE / subscribe() (queue)      │
                          └───────────────────────────────┘
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from app.domain.recommendation.entities import Recommendation
from app.domain.recommendation.ports import RecommendationPublisher
from app.infrastructure.recommendation.serialization import recommendation_to_dict

logger = logging.getLogger(__name__)


@dataclass
class StreamEvent:
    """A single event pushed to connected clients."""

    event_type: str          # "recommendation", "connected"
    symbol: Optional[str]
    data: dict
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps({
            "event": self.event_type,
            "symbol": self.symbol,
            "data": self.data,
            "timestamp": self.timestamp,
        }, default=str)

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"event: {self.event_type}\ndata: {self.to_json()}\n\n"


def _fingerprint(rec: Recommendation) -> tuple:
    """What a consumer acts on; unchanged fingerprints are not re-pushed.

    ``expires_at`` is included so a fresher recommendation with the same
    levels still reaches consumers holding the stale one.
    """
    def r(value: Optional[float]) -> Optional[float]:
        return None if value is None else round(value, 6)

    return (
        rec.action,
        r(rec.entry_price),
        r(rec.stop_loss),
        r(rec.take_profit),
        r(rec.position_size_pct),
        round(rec.confidence, 3),
        rec.expires_at,
    )


class ClientCommandError(ValueError):
    """A WebSocket command that is well-formed JSON but cannot be applied."""


def _requested_symbols(message: dict) -> set[str]:
    symbols = message.get("symbols", [])
    if not isinstance(symbols, list) or not all(isinstance(s, str) for s in symbols):
        raise ClientCommandError("symbols must be a list of strings")
    return {s.strip().upper() for s in symbols if s.strip()}


class RecommendationStreamManager(RecommendationPublisher):
    """Manages real-time recommendation streaming to WebSocket & SSE clients.

    Queue-backed consumers drop their oldest event when full, so a slow
    client never blocks publication. Clients may subscribe to specific
    symbols or receive everything (empty subscription).

    Usage in FastAPI:
        manager = RecommendationStreamManager()

        @app.websocket("/ws/recommendations")
        async def ws_endpoint(ws: WebSocket):
            await manager.connect(ws)
            try:
                while True:
                    await manager.handle_client_message(ws, await ws.receive_text())
            except WebSocketDisconnect:
                logger.debug("client closed")
            finally:
                manager.disconnect(ws)
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._websockets: set[Any] = set()
        self._queues: dict[str, asyncio.Queue] = {}
        self._subscriptions: dict[Any, set[str]] = {}
        self._max_queue_size = max_queue_size
        self._last_published: dict[str, tuple] = {}
        self._event_history: list[StreamEvent] = []
        self._max_history = 500
        self._stats = {
            "total_connections": 0,
            "total_events_broadcast": 0,
            "total_messages_sent": 0,
            "total_unchanged_skipped": 0,
            "total_dropped": 0,
        }

    @property
    def active_connections(self) -> int:
        return len(self._websockets) + len(self._queues)

    @property
    def stats(self) -> dict:
        return {**self._stats, "active_connections": self.active_connections}

    # ------------------------------------------------------------------
    # WebSocket lifecycle
    # ------------------------------------------------------------------

    async def connect(self, websocket: Any) -> None:
        """Accept ``websocket``; it receives every symbol until it subscribes."""
        await websocket.accept()
        self._websockets.add(websocket)
        self._subscriptions[websocket] = set()
        self._stats["total_connections"] += 1
        logger.info("Stream client joined (%d active)", self.active_connections)

        hello = StreamEvent(
            event_type="connected",
            symbol=None,
            data={
                "active_clients": self.active_connections,
                "actions": sorted(self._commands()),
            },
        )
        await websocket.send_text(hello.to_json())

    def disconnect(self, websocket: Any) -> None:
        """Forget ``websocket``. Calling it twice is harmless."""
        if websocket not in self._websockets:
            return
        self._websockets.remove(websocket)
        self._subscriptions.pop(websocket, None)
        logger.info("Stream client left (%d active)", self.active_connections)

    async def handle_client_message(self, websocket: Any, raw: str) -> None:
        """Apply one JSON command from a WebSocket client and answer it.

        Commands:
            {"action": "subscribe", "symbols": ["AAPL", "MSFT"]}
            {"action": "unsubscribe", "symbols": ["MSFT"]}
            {"action": "subscribe_all"}
            {"action": "ping"}

        Malformed commands are answered with an ``error`` reply; the
        connection stays open.
        """
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self._reply(websocket, {"error": "Invalid JSON"})
            return
        if not isinstance(message, dict):
            message = {}

        commands = self._commands()
        action = message.get("action", "")
        command = commands.get(action) if isinstance(action, str) else None
        if command is None:
            reply = {"error": f"Unknown action: {action}", "supported": sorted(commands)}
        else:
            try:
                reply = command(websocket, message)
            except ClientCommandError as exc:
                reply = {"error": str(exc), "action": action}
        await self._reply(websocket, reply)

    def _commands(self) -> dict[str, Callable[[Any, dict], dict]]:
        return {
            "subscribe": self._subscribe_symbols,
            "unsubscribe": self._unsubscribe_symbols,
            "subscribe_all": self._subscribe_everything,
            "ping": self._pong,
        }

    def _subscribe_symbols(self, websocket: Any, message: dict) -> dict:
        watched = self._subscriptions.setdefault(websocket, set())
        watched.update(_requested_symbols(message))
        return {"event": "subscribed", "symbols": sorted(watched)}

    def _unsubscribe_symbols(self, websocket: Any, message: dict) -> dict:
        watched = self._subscriptions.setdefault(websocket, set())
        watched.difference_update(_requested_symbols(message))
        return {"event": "unsubscribed", "symbols": sorted(watched)}

    def _subscribe_everything(self, websocket: Any, message: dict) -> dict:
        self._subscriptions[websocket] = set()
        return {"event": "subscribed_all"}

    @staticmethod
    def _pong(websocket: Any, message: dict) -> dict:
        return {"event": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}

    @staticmethod
    async def _reply(websocket: Any, payload: dict) -> None:
        await websocket.send_text(json.dumps(payload))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, recommendation: Recommendation) -> int:
        """Push a recommendation if it differs from the last one for its symbol.

        Returns:
            Number of receivers, 0 when unchanged.
        """
        fingerprint = _fingerprint(recommendation)
        if self._last_published.get(recommendation.symbol) == fingerprint:
            self._stats["total_unchanged_skipped"] += 1
            logger.debug("Recommendation for %s unchanged; not pushed", recommendation.symbol)
            return 0
        self._last_published[recommendation.symbol] = fingerprint

        event = StreamEvent(
            event_type="recommendation",
            symbol=recommendation.symbol,
            data=recommendation_to_dict(recommendation),
        )
        return await self.broadcast(event)

    async def broadcast(self, event: StreamEvent) -> int:
        """Send an event to all matching clients.

        Returns the number of clients that received the message.
        """
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        self._stats["total_events_broadcast"] += 1
        sent = 0
        dead: list[Any] = []

        for ws in list(self._websockets):
            if not self._wants(ws, event):
                continue
            try:
                await ws.send_text(event.to_json())
            except Exception as exc:
                logger.info("Dropping WebSocket client after send failure: %s", exc)
                dead.append(ws)
                continue
            sent += 1
            self._stats["total_messages_sent"] += 1

        for ws in dead:
            self.disconnect(ws)

        for client_id, queue in list(self._queues.items()):
            if not self._wants(client_id, event):
                continue
            if queue.full():
                queue.get_nowait()
                self._stats["total_dropped"] += 1
            queue.put_nowait(event)
            sent += 1
            self._stats["total_messages_sent"] += 1

        return sent

    def _wants(self, client: Any, event: StreamEvent) -> bool:
        subs = self._subscriptions.get(client, set())
        return not subs or event.symbol is None or event.symbol.upper() in subs

    # ------------------------------------------------------------------
    # Queue consumers (SSE and in-process subscribers)
    # ------------------------------------------------------------------

    def subscribe(self, symbols: Optional[set[str]] = None) -> "Subscription":
        """Register a queue-backed consumer for ``symbols`` (all when empty).

        Registration is immediate, so events published after this call
        are never missed.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        client_id = f"queue-{id(queue)}-{time.monotonic_ns()}"
        self._queues[client_id] = queue
        self._subscriptions[client_id] = {s.upper() for s in symbols or set()}
        self._stats["total_connections"] += 1
        return Subscription(self, client_id, queue)

    def _unsubscribe(self, client_id: str) -> None:
        self._queues.pop(client_id, None)
        self._subscriptions.pop(client_id, None)

    async def sse_generator(
        self, symbols: Optional[set[str]] = None, keepalive_seconds: float = 15.0
    ) -> AsyncGenerator[str, None]:
        """Async generator that yields Server-Sent Events.

        Use with FastAPI StreamingResponse.
        """
        subscription = self.subscribe(symbols)
        try:
            yield ": connected\n\n"
            while True:
                event = await subscription.get(timeout=keepalive_seconds)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse()
        finally:
            subscription.close()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_recent_events(self, limit: int = 50, symbol: Optional[str] = None) -> list[dict]:
        """Return recent events, optionally filtered by symbol."""
        events = self._event_history
        if symbol:
            events = [e for e in events if e.symbol and e.symbol.upper() == symbol.upper()]
        return [json.loads(e.to_json()) for e in events[-limit:]]


class Subscription:
    """Queue-backed stream of events for one consumer.

    Usage:
        with manager.subscribe({"AAPL"}) as events:
            async for event in events:
                ...
    """

    def __init__(
        self, manager: RecommendationStreamManager, client_id: str, queue: asyncio.Queue
    ) -> None:
        self._manager = manager
        self._client_id = client_id
        self._queue = queue
        self._closed = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def get(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """Next event, or None if ``timeout`` seconds pass first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._manager._unsubscribe(self._client_id)
