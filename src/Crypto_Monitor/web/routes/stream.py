"""Live update routes.

WS  /ws                  — Bidirectional feed: price updates, alerts, subscriptions.
GET /api/stream/prices   — SSE feed of the same events (``symbols=`` to follow rooms).
GET /api/socket/stats    — Connected clients and per-symbol subscription counts.

WebSocket clients send JSON messages::

    {"type": "subscribe-to-symbol", "symbol": "BTC"}
    {"type": "unsubscribe-from-symbol", "symbols": ["BTC", "ETH"]}
    {"type": "ping"}
"""

import asyncio
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sse_starlette.sse import EventSourceResponse

from Crypto_Monitor.models.events import BroadcastStats
from Crypto_Monitor.services.broadcast import BroadcastHub, Subscriber
from Crypto_Monitor.web.deps import get_broadcast_hub
from Crypto_Monitor.web.sse import create_sse_response, subscriber_events

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])
ws_router = APIRouter(tags=["stream"])

_SUBSCRIBE_TYPES = frozenset({"subscribe", "subscribe-to-symbol"})
_UNSUBSCRIBE_TYPES = frozenset({"unsubscribe", "unsubscribe-from-symbol"})


def parse_symbols_param(raw: str | None) -> list[str]:
    """Parse a comma-separated symbols parameter into a list."""
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


def _message_symbols(message: dict[str, Any]) -> list[str]:
    symbols = message.get("symbols")
    if isinstance(symbols, list):
        return [s for s in symbols if isinstance(s, str)]
    symbol = message.get("symbol")
    return [symbol] if isinstance(symbol, str) else []


def handle_client_message(hub: BroadcastHub, subscriber: Subscriber, raw: str) -> None:
    """Apply one client message to the subscriber's state."""
    try:
        message = json.loads(raw)
    except ValueError:
        logger.warning("Client %s sent invalid JSON", subscriber.client_id)
        return
    if not isinstance(message, dict):
        logger.warning("Client %s sent a non-object message", subscriber.client_id)
        return

    kind = message.get("type")
    if kind in _SUBSCRIBE_TYPES:
        hub.subscribe(subscriber, _message_symbols(message))
    elif kind in _UNSUBSCRIBE_TYPES:
        hub.unsubscribe(subscriber, _message_symbols(message))
    elif kind == "ping":
        hub.ping(subscriber)
    else:
        logger.warning("Client %s sent unknown message type %r", subscriber.client_id, kind)


async def _pump_events(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward queued hub events to the socket until it closes."""
    try:
        while True:
            event = await subscriber.next_event()
            await websocket.send_text(event.model_dump_json())
    except (WebSocketDisconnect, RuntimeError):
        logger.debug("Send loop ended for client %s", subscriber.client_id)


@ws_router.websocket("/ws")
async def live_updates(websocket: WebSocket) -> None:
    """Register a subscriber and relay events until the client disconnects."""
    hub: BroadcastHub = websocket.app.state.hub
    await websocket.accept()

    subscriber = hub.connect()
    initial = parse_symbols_param(websocket.query_params.get("symbols"))
    if initial:
        hub.subscribe(subscriber, initial)

    sender = asyncio.create_task(_pump_events(websocket, subscriber))
    try:
        while True:
            raw = await websocket.receive_text()
            handle_client_message(hub, subscriber, raw)
    except WebSocketDisconnect:
        logger.debug("Client %s disconnected", subscriber.client_id)
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        hub.disconnect(subscriber)


@router.get("/stream/prices")
async def stream_prices(
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
    symbols: Annotated[str | None, Query(description="Comma-separated symbols")] = None,
) -> EventSourceResponse:
    """Stream hub events via Server-Sent Events."""
    return create_sse_response(subscriber_events(hub, parse_symbols_param(symbols)))


@router.get("/socket/stats", response_model=BroadcastStats)
async def socket_stats(
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
) -> BroadcastStats:
    return hub.get_stats()
