"""Pydantic v2 models, enums, and type definitions.

Re-exports all public models so consumers can import directly:
    from Crypto_Monitor.models import AlertRule, PriceSnapshot
"""

from Crypto_Monitor.models.alerts import (
    DEFAULT_USER_ID,
    AlertRule,
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertStats,
    NotificationPreferences,
    TriggeredAlert,
)
from Crypto_Monitor.models.enums import AlertCondition, HubEventType, NotificationLevel
from Crypto_Monitor.models.events import BroadcastStats, HubEvent
from Crypto_Monitor.models.health import HealthStatus
from Crypto_Monitor.models.market_data import (
    CoinListing,
    PriceHistoryRecord,
    PricePoint,
    PriceSnapshot,
    UsageStats,
)

__all__ = [
    # Enums
    "AlertCondition",
    "HubEventType",
    "NotificationLevel",
    # Market data
    "CoinListing",
    "PriceHistoryRecord",
    "PricePoint",
    "PriceSnapshot",
    "UsageStats",
    # Alerts
    "DEFAULT_USER_ID",
    "AlertRule",
    "AlertRuleCreate",
    "AlertRuleUpdate",
    "AlertStats",
    "NotificationPreferences",
    "TriggeredAlert",
    # Events
    "BroadcastStats",
    "HubEvent",
    # Health
    "HealthStatus",
]
