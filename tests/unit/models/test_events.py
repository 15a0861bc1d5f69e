"""Tests for broadcast event models and the health status model."""

import datetime

from Crypto_Monitor.models.enums import HubEventType
from Crypto_Monitor.models.events import BroadcastStats, HubEvent
from Crypto_Monitor.models.health import HealthStatus

_NOW = datetime.datetime(2025, 1, 15, 15, 30, 0, tzinfo=datetime.UTC)


class TestHubEvent:
    def test_event_name_serialized_as_wire_name(self) -> None:
        event = HubEvent(event=HubEventType.PONG, data={}, timestamp=_NOW)
        dumped = event.model_dump(mode="json")
        assert dumped["event"] == "pong"
        assert dumped["data"] == {}

    def test_json_roundtrip(self) -> None:
        event = HubEvent(
            event=HubEventType.SUBSCRIPTION_CONFIRMED,
            data={"symbol": "BTC", "subscribed": True},
            timestamp=_NOW,
        )
        assert HubEvent.model_validate_json(event.model_dump_json()) == event


class TestBroadcastStats:
    def test_construction(self) -> None:
        stats = BroadcastStats(
            total_clients=2, subscription_stats={"BTC": 2, "ETH": 1}, generated_at=_NOW
        )
        assert stats.subscription_stats["BTC"] == 2


class TestHealthStatus:
    def test_json_roundtrip(self, sample_health_status: HealthStatus) -> None:
        restored = HealthStatus.model_validate_json(sample_health_status.model_dump_json())
        assert restored == sample_health_status
