"""Events carried by the live broadcast channel."""

import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from Crypto_Monitor.models.enums import HubEventType


class HubEvent(BaseModel):
    """One outbound message for a live subscriber.

    ``data`` is already JSON-compatible (produced with ``model_dump(mode="json")``).
    """

    model_config = ConfigDict(frozen=True)

    event: HubEventType
    data: Any
    timestamp: datetime.datetime


class BroadcastStats(BaseModel):
    """Connection and subscription counts for the broadcast hub."""

    model_config = ConfigDict(frozen=True)

    total_clients: int
    subscription_stats: dict[str, int]
    generated_at: datetime.datetime
