"""Repository layer for all database query operations.

Provides typed CRUD operations backed by a Database instance. All queries use
parameterized SQL (no string interpolation). Decimal columns are stored as
TEXT and timestamps as UTC ISO-8601 strings, so lexical order is time order.
"""

import datetime
import logging
import sqlite3
from collections.abc import Sequence
from decimal import Decimal

from pydantic import ValidationError

from Crypto_Monitor.data.database import Database
from Crypto_Monitor.models.alerts import (
    AlertRule,
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertStats,
    NotificationPreferences,
)
from Crypto_Monitor.models.enums import AlertCondition
from Crypto_Monitor.models.market_data import PriceHistoryRecord, PriceSnapshot

logger = logging.getLogger(__name__)

_ALERT_COLUMNS = (
    "id, user_id, symbol, condition, target_price, percentage_change, "
    "is_active, created_at, updated_at"
)


class Repository:
    """Query interface for the Crypto Monitor persistence layer.

    All methods operate through the provided Database instance's connection.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Alert rules
    # ------------------------------------------------------------------

    async def create_alert(self, user_id: str, data: AlertRuleCreate) -> AlertRule:
        """Insert a new active alert rule and return it."""
        conn = self._db.connection
        now = _utcnow().isoformat()
        cursor = await conn.execute(
            "INSERT INTO alert_rules "
            "(user_id, symbol, condition, target_price, percentage_change, "
            "is_active, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, 1, ?, ?)",
            (
                user_id,
                data.symbol.strip().upper(),
                data.condition.value,
                _decimal_to_text(data.target_price),
                _decimal_to_text(data.percentage_change),
                now,
                now,
            ),
        )
        await conn.commit()
        alert_id = cursor.lastrowid
        if alert_id is None:
            msg = "Failed to retrieve lastrowid after alert insert."
            raise RuntimeError(msg)
        alert = await self.get_alert(alert_id)
        if alert is None:
            msg = f"Alert {alert_id} vanished immediately after insert."
            raise RuntimeError(msg)
        return alert

    async def get_alert(self, alert_id: int, user_id: str | None = None) -> AlertRule | None:
        """Return one alert rule, optionally restricted to its owner."""
        conn = self._db.connection
        if user_id is None:
            cursor = await conn.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alert_rules WHERE id = ?",  # noqa: S608
                (alert_id,),
            )
        else:
            cursor = await conn.execute(
                f"SELECT {_ALERT_COLUMNS} FROM alert_rules WHERE id = ? AND user_id = ?",  # noqa: S608
                (alert_id, user_id),
            )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_alert(row)

    async def list_user_alerts(self, user_id: str) -> list[AlertRule]:
        """Return a user's active alert rules, newest first."""
        conn = self._db.connection
        cursor = await conn.execute(
            f"SELECT {_ALERT_COLUMNS} FROM alert_rules "  # noqa: S608
            "WHERE user_id = ? AND is_active = 1 ORDER BY created_at DESC, id DESC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_alert(row) for row in rows]

    async def list_active_alerts(self) -> list[AlertRule]:
        """Return every active alert rule across all users."""
        conn = self._db.connection
        cursor = await conn.execute(
            f"SELECT {_ALERT_COLUMNS} FROM alert_rules WHERE is_active = 1 ORDER BY id"  # noqa: S608
        )
        rows = await cursor.fetchall()
        return [_row_to_alert(row) for row in rows]

    async def update_alert(
        self,
        alert_id: int,
        update: AlertRuleUpdate,
        user_id: str | None = None,
    ) -> AlertRule | None:
        """Apply a partial update and return the new rule, or None if not found.

        The merged rule is re-validated, so an update can never leave a rule
        with the wrong threshold for its condition.
        """
        current = await self.get_alert(alert_id, user_id)
        if current is None:
            return None

        changes = update.model_dump(exclude_unset=True)
        merged = current.model_dump()
        merged.update(changes)
        if "condition" in changes:
            # Switching condition kind drops the threshold that no longer applies.
            if merged["condition"] in ("above", "below"):
                merged["percentage_change"] = changes.get("percentage_change")
            else:
                merged["target_price"] = changes.get("target_price")
        merged["updated_at"] = _utcnow()
        rule = AlertRule.model_validate(merged)

        conn = self._db.connection
        await conn.execute(
            "UPDATE alert_rules SET condition = ?, target_price = ?, percentage_change = ?, "
            "is_active = ?, updated_at = ? WHERE id = ?",
            (
                rule.condition.value,
                _decimal_to_text(rule.target_price),
                _decimal_to_text(rule.percentage_change),
                int(rule.is_active),
                rule.updated_at.isoformat(),
                alert_id,
            ),
        )
        await conn.commit()
        return rule

    async def deactivate_alert(self, alert_id: int) -> bool:
        """Set ``is_active`` to false. Returns False if the rule no longer exists."""
        conn = self._db.connection
        cursor = await conn.execute(
            "UPDATE alert_rules SET is_active = 0, updated_at = ? WHERE id = ?",
            (_utcnow().isoformat(), alert_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def delete_alert(self, alert_id: int, user_id: str | None = None) -> bool:
        """Delete an alert rule. Returns True if a row was removed."""
        conn = self._db.connection
        if user_id is None:
            cursor = await conn.execute("DELETE FROM alert_rules WHERE id = ?", (alert_id,))
        else:
            cursor = await conn.execute(
                "DELETE FROM alert_rules WHERE id = ? AND user_id = ?",
                (alert_id, user_id),
            )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_alert_stats(self, user_id: str | None = None) -> AlertStats:
        """Return total/active counts and active counts per symbol."""
        conn = self._db.connection
        where = "WHERE user_id = ?" if user_id is not None else ""
        params: tuple[str, ...] = (user_id,) if user_id is not None else ()

        cursor = await conn.execute(
            f"SELECT COUNT(*), COALESCE(SUM(is_active), 0) FROM alert_rules {where}",  # noqa: S608
            params,
        )
        totals = await cursor.fetchone()
        total, active = (totals[0], totals[1]) if totals is not None else (0, 0)

        active_where = f"{where} AND is_active = 1" if where else "WHERE is_active = 1"
        cursor = await conn.execute(
            f"SELECT symbol, COUNT(*) AS n FROM alert_rules {active_where} "  # noqa: S608
            "GROUP BY symbol ORDER BY n DESC, symbol",
            params,
        )
        rows = await cursor.fetchall()
        return AlertStats(
            total_alerts=int(total),
            active_alerts=int(active),
            alerts_by_symbol={row[0]: int(row[1]) for row in rows},
        )

    # ------------------------------------------------------------------
    # Users / notification preferences
    # ------------------------------------------------------------------

    async def get_notification_preferences(self, user_id: str) -> NotificationPreferences | None:
        """Return a user's notification preferences, or None for unknown users."""
        conn = self._db.connection
        cursor = await conn.execute(
            "SELECT user_id, email, first_name, email_notifications FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return NotificationPreferences(
            user_id=row[0],
            email=row[1],
            first_name=row[2],
            email_notifications=bool(row[3]),
        )

    async def save_notification_preferences(self, prefs: NotificationPreferences) -> None:
        """Insert or replace a user's notification preferences."""
        conn = self._db.connection
        await conn.execute(
            "INSERT OR REPLACE INTO users (user_id, email, first_name, email_notifications) "
            "VALUES (?, ?, ?, ?)",
            (prefs.user_id, prefs.email, prefs.first_name, int(prefs.email_notifications)),
        )
        await conn.commit()

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    async def save_price_history(
        self,
        snapshots: Sequence[PriceSnapshot],
        timestamp: datetime.datetime | None = None,
    ) -> int:
        """Batch-insert one history sample per snapshot. Returns the row count."""
        if not snapshots:
            return 0
        stamp = (timestamp or _utcnow()).isoformat()
        rows = [
            (
                snap.symbol,
                str(snap.current_price),
                stamp,
                _decimal_to_text(snap.total_volume),
                _decimal_to_text(snap.market_cap),
            )
            for snap in snapshots
        ]
        conn = self._db.connection
        await conn.executemany(
            "INSERT INTO price_history (symbol, price, timestamp, volume_24h, market_cap) "
            "VALUES (?, ?, ?, ?, ?)",
            rows,
        )
        await conn.commit()
        return len(rows)

    async def get_price_history(self, symbol: str, limit: int = 100) -> list[PriceHistoryRecord]:
        """Return the most recent stored samples for a symbol, newest first."""
        conn = self._db.connection
        cursor = await conn.execute(
            "SELECT symbol, price, timestamp, volume_24h, market_cap FROM price_history "
            "WHERE symbol = ? ORDER BY timestamp DESC LIMIT ?",
            (symbol.upper(), limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_history(row) for row in rows]

    async def delete_price_history_before(self, cutoff: datetime.datetime) -> int:
        """Delete samples older than ``cutoff``. Returns the number removed."""
        conn = self._db.connection
        cursor = await conn.execute(
            "DELETE FROM price_history WHERE timestamp < ?",
            (cutoff.astimezone(datetime.UTC).isoformat(),),
        )
        await conn.commit()
        return cursor.rowcount


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _decimal_to_text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _text_to_decimal(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


def _row_to_alert(row: sqlite3.Row) -> AlertRule:
    """Convert a database row tuple to an AlertRule model.

    A row whose thresholds do not match its condition (written by another
    client of the table) is loaded unvalidated rather than raising, so one
    bad rule cannot break a whole listing. The evaluator never fires a rule
    whose threshold is missing.
    """
    fields = {
        "id": row[0],
        "user_id": row[1],
        "symbol": row[2],
        "condition": AlertCondition(row[3]),
        "target_price": _text_to_decimal(row[4]),
        "percentage_change": _text_to_decimal(row[5]),
        "is_active": bool(row[6]),
        "created_at": datetime.datetime.fromisoformat(row[7]),
        "updated_at": datetime.datetime.fromisoformat(row[8]),
    }
    try:
        return AlertRule(**fields)
    except ValidationError as exc:
        logger.warning(
            "Alert rule %s has invalid thresholds, loading unvalidated: %s",
            row[0],
            exc.errors()[0]["msg"],
        )
        return AlertRule.model_construct(**fields)


def _row_to_history(row: sqlite3.Row) -> PriceHistoryRecord:
    """Convert a database row tuple to a PriceHistoryRecord model."""
    return PriceHistoryRecord(
        symbol=row[0],
        price=Decimal(row[1]),
        timestamp=datetime.datetime.fromisoformat(row[2]),
        volume_24h=_text_to_decimal(row[3]),
        market_cap=_text_to_decimal(row[4]),
    )
