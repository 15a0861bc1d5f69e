"""Fan-out of live events to connected subscribers.

Each connection (WebSocket or SSE) registers a ``Subscriber``: a bounded
outbox queue plus the set of symbols it follows. The hub never blocks on a
slow consumer. A full outbox drops the event with a warning, and delivery
failures are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any, Final

from Crypto_Monitor.models.alerts import TriggeredAlert
from Crypto_Monitor.models.enums import HubEventType, NotificationLevel
from Crypto_Monitor.models.events import BroadcastStats, HubEvent
from Crypto_Monitor.models.market_data import PriceSnapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OUTBOX_MAX_SIZE: Final[int] = 256
ROOM_PREFIX: Final[str] = "symbol:"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def room_name(symbol: str) -> str:
    """Room identifier for a symbol, e.g. ``symbol:BTC``."""
    return f"{ROOM_PREFIX}{symbol.strip().upper()}"


class Subscriber:
    """One live connection: an outbox and the symbols it follows."""

    def __init__(self, client_id: str, max_queue_size: int = OUTBOX_MAX_SIZE) -> None:
        self.client_id = client_id
        self.symbols: set[str] = set()
        self.connected_at = _utcnow()
        self._outbox: asyncio.Queue[HubEvent] = asyncio.Queue(maxsize=max_queue_size)

    @property
    def rooms(self) -> set[str]:
        return {room_name(s) for s in self.symbols}

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    async def next_event(self) -> HubEvent:
        """Wait for the next outbound event."""
        return await self._outbox.get()

    def drain(self) -> list[HubEvent]:
        """Return every queued event without waiting."""
        events: list[HubEvent] = []
        while not self._outbox.empty():
            events.append(self._outbox.get_nowait())
        return events

    def offer(self, event: HubEvent) -> bool:
        """Queue ``event``; False if the outbox is full and it was dropped."""
        try:
            self._outbox.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Outbox full for client %s; dropping %s event", self.client_id, event.event
            )
            return False
        return True


class BroadcastHub:
    """Connection registry and event fan-out.

    Usage::

        hub = BroadcastHub()
        subscriber = hub.connect()
        hub.subscribe(subscriber, ["btc"])
        hub.broadcast_prices(snapshots)
        event = await subscriber.next_event()
    """

    def __init__(self, max_queue_size: int = OUTBOX_MAX_SIZE) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, Subscriber] = {}

        logger.info("BroadcastHub initialized: outbox size=%d", max_queue_size)

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, client_id: str | None = None) -> Subscriber:
        """Register a new subscriber and greet it with ``connection-status``."""
        subscriber = Subscriber(client_id or uuid.uuid4().hex, self._max_queue_size)
        self._subscribers[subscriber.client_id] = subscriber
        subscriber.offer(
            self._event(
                HubEventType.CONNECTION_STATUS,
                {"connected": True, "client_id": subscriber.client_id},
            )
        )
        logger.info("Client connected: %s", subscriber.client_id)
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        """Forget a subscriber and its subscriptions. Idempotent."""
        if self._subscribers.pop(subscriber.client_id, None) is not None:
            logger.info("Client disconnected: %s", subscriber.client_id)
        subscriber.symbols.clear()

    def subscribe(self, subscriber: Subscriber, symbols: Iterable[str]) -> list[str]:
        """Follow ``symbols`` (uppercased) and confirm each one. Idempotent."""
        return self._set_subscription(subscriber, symbols, subscribed=True)

    def unsubscribe(self, subscriber: Subscriber, symbols: Iterable[str]) -> list[str]:
        """Stop following ``symbols`` and confirm each one. Idempotent."""
        return self._set_subscription(subscriber, symbols, subscribed=False)

    def ping(self, subscriber: Subscriber) -> None:
        subscriber.offer(self._event(HubEventType.PONG, {}))

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast_prices(self, snapshots: Sequence[PriceSnapshot]) -> int:
        """Send ``price-update`` to everyone, then ``symbol-price-update`` per room.

        Returns the number of events queued.
        """
        if not snapshots:
            return 0

        payload = [s.model_dump(mode="json") for s in snapshots]
        delivered = self._send_all(self._event(HubEventType.PRICE_UPDATE, payload))

        for snapshot in snapshots:
            event = self._event(
                HubEventType.SYMBOL_PRICE_UPDATE, snapshot.model_dump(mode="json")
            )
            for subscriber in self._room_members(snapshot.symbol):
                delivered += int(subscriber.offer(event))

        logger.debug(
            "Broadcast %d snapshots to %d clients", len(snapshots), len(self._subscribers)
        )
        return delivered

    def send_alert(self, alert: TriggeredAlert, client_id: str | None = None) -> int:
        """Send ``alert-triggered`` to one client, or once to every client.

        A global send already reaches every member of the ``symbol:<SYM>``
        room, so room members are not sent a second copy.
        """
        event = self._event(HubEventType.ALERT_TRIGGERED, alert.model_dump(mode="json"))
        if client_id is not None:
            subscriber = self._subscribers.get(client_id)
            delivered = int(subscriber.offer(event)) if subscriber is not None else 0
        else:
            delivered = self._send_all(event)

        logger.info(
            "Alert sent for %s: %s (%d clients)",
            alert.rule.symbol,
            alert.rule.condition,
            delivered,
        )
        return delivered

    def broadcast_system_notification(
        self, message: str, level: NotificationLevel = NotificationLevel.INFO
    ) -> int:
        event = self._event(
            HubEventType.SYSTEM_NOTIFICATION, {"message": message, "type": level.value}
        )
        delivered = self._send_all(event)
        logger.info("System notification sent: %s", message)
        return delivered

    def get_stats(self) -> BroadcastStats:
        counts: Counter[str] = Counter()
        for subscriber in self._subscribers.values():
            counts.update(subscriber.symbols)
        return BroadcastStats(
            total_clients=len(self._subscribers),
            subscription_stats=dict(counts),
            generated_at=_utcnow(),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _event(event_type: HubEventType, data: Any) -> HubEvent:
        return HubEvent(event=event_type, data=data, timestamp=_utcnow())

    def _send_all(self, event: HubEvent) -> int:
        return sum(int(s.offer(event)) for s in list(self._subscribers.values()))

    def _room_members(self, symbol: str) -> list[Subscriber]:
        wanted = symbol.upper()
        return [s for s in self._subscribers.values() if wanted in s.symbols]

    def _set_subscription(
        self, subscriber: Subscriber, symbols: Iterable[str], *, subscribed: bool
    ) -> list[str]:
        normalized = [s.strip().upper() for s in symbols if s.strip()]
        for symbol in normalized:
            if subscribed:
                subscriber.symbols.add(symbol)
            else:
                subscriber.symbols.discard(symbol)
            subscriber.offer(
                self._event(
                    HubEventType.SUBSCRIPTION_CONFIRMED,
                    {"symbol": symbol, "subscribed": subscribed},
                )
            )
            logger.debug(
                "Client %s %s %s",
                subscriber.client_id,
                "subscribed to" if subscribed else "unsubscribed from",
                symbol,
            )
        return normalized
