"""
Tests for the real-time recommendation stream.

Covers:
- StreamEvent serialization
- RecommendationStreamManager (WebSocket protocol, change detection,
  symbol filters, bounded queues)
- SSE generator
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.domain.recommendation.entities import Action
from app.infrastructure.recommendation.stream import (
    RecommendationStreamManager,
    StreamEvent,
)
from app.interfaces import realtime

from helpers import NOW, make_recommendation


def _websocket(send_side_effect=None) -> AsyncMock:
    ws = AsyncMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock(side_effect=send_side_effect)
    return ws


def _last_message(ws) -> dict:
    return json.loads(ws.send_text.call_args_list[-1].args[0])


# =====================================================================
# StreamEvent
# =====================================================================

class TestStreamEvent:
    """Tests for the StreamEvent data class."""

    def test_to_json_produces_valid_json(self):
        event = StreamEvent(event_type="recommendation", symbol="AAPL", data={"action": "BUY"})

        parsed = json.loads(event.to_json())

        assert parsed["event"] == "recommendation"
        assert parsed["symbol"] == "AAPL"
        assert parsed["data"]["action"] == "BUY"
        assert "timestamp" in parsed

    def test_to_sse_format(self):
        sse = StreamEvent(event_type="recommendation", symbol="AAPL", data={}).to_sse()

        assert sse.startswith("event: recommendation\n")
        assert "data: " in sse
        assert sse.endswith("\n\n")


# =====================================================================
# WebSocket protocol
# =====================================================================

class TestWebSocketClients:
    """Tests for connection handling and client commands."""

    @pytest.mark.asyncio
    async def test_connect_sends_welcome_and_disconnect(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()

        await mgr.connect(ws)

        ws.accept.assert_awaited_once()
        assert _last_message(ws)["event"] == "connected"
        assert mgr.active_connections == 1

        mgr.disconnect(ws)
        assert mgr.active_connections == 0

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        await mgr.handle_client_message(
            ws, json.dumps({"action": "subscribe", "symbols": ["aapl", "MSFT"]})
        )
        assert _last_message(ws) == {"event": "subscribed", "symbols": ["AAPL", "MSFT"]}

        await mgr.handle_client_message(
            ws, json.dumps({"action": "unsubscribe", "symbols": ["MSFT"]})
        )
        assert _last_message(ws) == {"event": "unsubscribed", "symbols": ["AAPL"]}

    @pytest.mark.asyncio
    async def test_ping(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        await mgr.handle_client_message(ws, json.dumps({"action": "ping"}))

        assert ws.send_text.await_count == 2
        assert _last_message(ws)["event"] == "pong"

    @pytest.mark.asyncio
    async def test_invalid_json_and_unknown_action(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        await mgr.handle_client_message(ws, "not json at all")
        assert _last_message(ws) == {"error": "Invalid JSON"}

        await mgr.handle_client_message(ws, json.dumps({"action": "teleport"}))
        reply = _last_message(ws)
        assert reply["error"] == "Unknown action: teleport"
        assert "ping" in reply["supported"]

    @pytest.mark.asyncio
    async def test_non_string_symbols_are_rejected(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)
        await mgr.handle_client_message(
            ws, json.dumps({"action": "subscribe", "symbols": ["AAPL"]})
        )

        await mgr.handle_client_message(ws, json.dumps({"action": "subscribe", "symbols": [1]}))
        assert _last_message(ws) == {
            "error": "symbols must be a list of strings",
            "action": "subscribe",
        }

        await mgr.handle_client_message(
            ws, json.dumps({"action": "unsubscribe", "symbols": "AAPL"})
        )
        assert "error" in _last_message(ws)

        await mgr.handle_client_message(ws, json.dumps({"action": "subscribe", "symbols": []}))
        assert _last_message(ws) == {"event": "subscribed", "symbols": ["AAPL"]}

    @pytest.mark.asyncio
    async def test_non_object_message_is_unknown_action(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        await mgr.handle_client_message(ws, json.dumps(["ping"]))

        assert _last_message(ws)["error"] == "Unknown action: "

    @pytest.mark.asyncio
    async def test_endpoint_disconnects_client_on_unexpected_error(self, monkeypatch):
        mgr = RecommendationStreamManager()
        monkeypatch.setattr(realtime, "_stream_manager", mgr)
        ws = _websocket()
        ws.receive_text = AsyncMock(
            side_effect=[json.dumps({"action": "ping"}), RuntimeError("transport reset")]
        )

        with pytest.raises(RuntimeError):
            await realtime.ws_recommendations(ws)

        assert _last_message(ws)["event"] == "pong"
        assert mgr.active_connections == 0

    @pytest.mark.asyncio
    async def test_disconnect_twice_is_harmless(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        mgr.disconnect(ws)
        mgr.disconnect(ws)

        assert mgr.active_connections == 0
        assert mgr.stats["total_connections"] == 1

    @pytest.mark.asyncio
    async def test_symbol_filter(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)
        await mgr.handle_client_message(
            ws, json.dumps({"action": "subscribe", "symbols": ["AAPL"]})
        )

        assert await mgr.publish(make_recommendation(symbol="MSFT")) == 0
        assert await mgr.publish(make_recommendation(symbol="AAPL")) == 1
        assert _last_message(ws)["symbol"] == "AAPL"

    @pytest.mark.asyncio
    async def test_failed_send_drops_client(self):
        mgr = RecommendationStreamManager()
        ws = _websocket(send_side_effect=[None, RuntimeError("socket closed")])
        await mgr.connect(ws)

        sent = await mgr.publish(make_recommendation())

        assert sent == 0
        assert mgr.active_connections == 0


# =====================================================================
# Publication
# =====================================================================

class TestPublication:
    """Tests for change detection and queue-backed subscribers."""

    @pytest.mark.asyncio
    async def test_unchanged_recommendation_is_not_pushed(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        assert await mgr.publish(make_recommendation()) == 1
        # New id and timestamp, same actionable content.
        assert await mgr.publish(make_recommendation()) == 0
        assert await mgr.publish(make_recommendation(target=107.0)) == 1
        assert await mgr.publish(make_recommendation(Action.HOLD, stop=None, target=None)) == 1

        assert mgr.stats["total_unchanged_skipped"] == 1
        assert mgr.stats["total_events_broadcast"] == 3

    @pytest.mark.asyncio
    async def test_newer_recommendation_with_same_levels_is_pushed(self):
        mgr = RecommendationStreamManager()
        ws = _websocket()
        await mgr.connect(ws)

        first = make_recommendation()
        later = make_recommendation(timestamp=NOW + timedelta(minutes=30))

        assert await mgr.publish(first) == 1
        assert await mgr.publish(later) == 1
        assert _last_message(ws)["data"]["id"] == str(later.id)
        assert mgr.stats["total_unchanged_skipped"] == 0

    @pytest.mark.asyncio
    async def test_subscription_receives_matching_events(self):
        mgr = RecommendationStreamManager()

        with mgr.subscribe({"aapl"}) as events:
            await mgr.publish(make_recommendation(symbol="MSFT"))
            await mgr.publish(make_recommendation(symbol="AAPL"))

            event = await events.get(timeout=0.5)
            assert event.symbol == "AAPL"
            assert event.data["action"] == "BUY"
            assert await events.get(timeout=0.05) is None

        assert mgr.active_connections == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        mgr = RecommendationStreamManager(max_queue_size=1)
        subscription = mgr.subscribe()

        await mgr.publish(make_recommendation(symbol="AAPL"))
        await mgr.publish(make_recommendation(symbol="MSFT"))

        event = await subscription.get(timeout=0.5)
        assert event.symbol == "MSFT"
        assert mgr.stats["total_dropped"] == 1
        subscription.close()

    @pytest.mark.asyncio
    async def test_recent_events_filtered_by_symbol(self):
        mgr = RecommendationStreamManager()
        await mgr.publish(make_recommendation(symbol="AAPL"))
        await mgr.publish(make_recommendation(symbol="MSFT"))
        await mgr.publish(make_recommendation(symbol="AAPL", target=107.0))

        recent = mgr.get_recent_events(limit=10, symbol="msft")
        assert len(recent) == 1
        assert recent[0]["symbol"] == "MSFT"
        assert [e["symbol"] for e in mgr.get_recent_events(limit=2)] == ["MSFT", "AAPL"]


# =====================================================================
# SSE
# =====================================================================

class TestSSEGenerator:
    """Tests for the Server-Sent Events generator."""

    @pytest.mark.asyncio
    async def test_connected_keepalive_then_event(self):
        mgr = RecommendationStreamManager()
        stream = mgr.sse_generator(symbols={"AAPL"}, keepalive_seconds=0.05)

        assert await stream.__anext__() == ": connected\n\n"
        assert await stream.__anext__() == ": keepalive\n\n"

        await mgr.publish(make_recommendation())
        chunk = await stream.__anext__()

        assert chunk.startswith("event: recommendation\n")
        payload = json.loads(chunk.split("data: ", 1)[1])
        assert payload["symbol"] == "AAPL"

        await stream.aclose()
        assert mgr.active_connections == 0
