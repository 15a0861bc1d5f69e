"""Alert rule models, notification preferences, and the trigger event.

An alert rule carries exactly one threshold: ``target_price`` for the
absolute-price conditions, ``percentage_change`` for the 24h-percentage
conditions. The validators below reject any other combination.
"""

import datetime
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from Crypto_Monitor.models.enums import AlertCondition
from Crypto_Monitor.models.market_data import PriceSnapshot

DEFAULT_USER_ID = "default"


def _check_thresholds(
    condition: AlertCondition,
    target_price: Decimal | None,
    percentage_change: Decimal | None,
) -> None:
    if condition.uses_price:
        if target_price is None:
            msg = f"target_price is required for condition '{condition}'"
            raise ValueError(msg)
        if percentage_change is not None:
            msg = f"percentage_change is not allowed for condition '{condition}'"
            raise ValueError(msg)
    else:
        if percentage_change is None:
            msg = f"percentage_change is required for condition '{condition}'"
            raise ValueError(msg)
        if target_price is not None:
            msg = f"target_price is not allowed for condition '{condition}'"
            raise ValueError(msg)


class AlertRule(BaseModel):
    """A user's standing request to be notified about a coin.

    Frozen: deactivation produces a new row state in the store, never an
    in-place mutation of a rule held by the scheduler.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str = DEFAULT_USER_ID
    symbol: str
    condition: AlertCondition
    target_price: Decimal | None = Field(default=None, gt=0)
    percentage_change: Decimal | None = Field(default=None, gt=0)
    is_active: bool = True
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        _check_thresholds(self.condition, self.target_price, self.percentage_change)
        return self

    @property
    def threshold(self) -> Decimal | None:
        """The threshold relevant to this rule's condition."""
        return self.target_price if self.condition.uses_price else self.percentage_change

    @field_serializer("target_price", "percentage_change")
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        """Serialize Decimal fields as strings to preserve precision."""
        return None if value is None else str(value)


class AlertRuleCreate(BaseModel):
    """Request body for creating an alert rule."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1, max_length=20)
    condition: AlertCondition
    target_price: Decimal | None = Field(default=None, gt=0)
    percentage_change: Decimal | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        _check_thresholds(self.condition, self.target_price, self.percentage_change)
        return self


class AlertRuleUpdate(BaseModel):
    """Partial update for an alert rule. Unset fields are left unchanged."""

    model_config = ConfigDict(frozen=True)

    condition: AlertCondition | None = None
    target_price: Decimal | None = Field(default=None, gt=0)
    percentage_change: Decimal | None = Field(default=None, gt=0)
    is_active: bool | None = None


class AlertStats(BaseModel):
    """Aggregate counts over a user's (or all) alert rules."""

    model_config = ConfigDict(frozen=True)

    total_alerts: int
    active_alerts: int
    alerts_by_symbol: dict[str, int]


class NotificationPreferences(BaseModel):
    """Delivery preferences for a user, read from the user store."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str | None = None
    first_name: str = ""
    email_notifications: bool = False


class TriggeredAlert(BaseModel):
    """Event emitted when a rule fires against a snapshot."""

    model_config = ConfigDict(frozen=True)

    rule: AlertRule
    snapshot: PriceSnapshot
    current_price: Decimal
    price_change_percentage_24h: Decimal | None
    triggered_at: datetime.datetime

    @field_serializer("current_price", "price_change_percentage_24h")
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        """Serialize Decimal fields as strings to preserve precision."""
        return None if value is None else str(value)
