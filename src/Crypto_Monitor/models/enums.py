"""StrEnum types for the monitoring domain.

All enums use Python 3.13+ StrEnum. Values are lowercase strings.
Use enum members in business logic, never raw strings.
"""

from enum import StrEnum


class AlertCondition(StrEnum):
    """What an alert rule compares against the latest snapshot."""

    ABOVE = "above"
    BELOW = "below"
    PERCENT_INCREASE = "percent_increase"
    PERCENT_DECREASE = "percent_decrease"

    @property
    def uses_price(self) -> bool:
        """True for conditions thresholded on an absolute price."""
        return self in (AlertCondition.ABOVE, AlertCondition.BELOW)


class NotificationLevel(StrEnum):
    """Severity of a system notification pushed to live subscribers."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class HubEventType(StrEnum):
    """Event names sent over the live broadcast channel."""

    CONNECTION_STATUS = "connection-status"
    PRICE_UPDATE = "price-update"
    SYMBOL_PRICE_UPDATE = "symbol-price-update"
    SUBSCRIPTION_CONFIRMED = "subscription-confirmed"
    ALERT_TRIGGERED = "alert-triggered"
    SYSTEM_NOTIFICATION = "system-notification"
    PONG = "pong"
