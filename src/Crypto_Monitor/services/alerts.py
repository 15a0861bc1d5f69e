"""Alert rule management and the trigger path.

``AlertService`` owns rule CRUD (through the Repository) and the per-tick
check: evaluate every active rule against the fetched snapshots and, for
each rule that fires, push the event, email the owner if they opted in,
then deactivate the rule so it never fires again.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence

from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.models.alerts import (
    AlertRule,
    AlertRuleCreate,
    AlertRuleUpdate,
    AlertStats,
    TriggeredAlert,
)
from Crypto_Monitor.models.market_data import PriceSnapshot
from Crypto_Monitor.services.alert_evaluator import evaluate_rules
from Crypto_Monitor.services.broadcast import BroadcastHub
from Crypto_Monitor.services.mailer import EmailService, NullEmailService
from Crypto_Monitor.utils.exceptions import AlertNotFoundError

logger = logging.getLogger(__name__)


class AlertService:
    """Rule CRUD plus evaluation and triggering.

    Usage::

        service = AlertService(Repository(db), hub, email_service)
        rule = await service.create_alert("default", AlertRuleCreate(...))
        fired = await service.check_alerts(snapshots)
    """

    def __init__(
        self,
        repository: Repository,
        hub: BroadcastHub,
        email_service: EmailService | None = None,
    ) -> None:
        self._repository = repository
        self._hub = hub
        self._email = email_service or NullEmailService()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_alert(self, user_id: str, data: AlertRuleCreate) -> AlertRule:
        rule = await self._repository.create_alert(user_id, data)
        logger.info(
            "Alert created: %s %s for user %s (id=%d)",
            rule.symbol,
            rule.condition,
            user_id,
            rule.id,
        )
        return rule

    async def list_alerts(self, user_id: str) -> list[AlertRule]:
        return await self._repository.list_user_alerts(user_id)

    async def get_alert(self, alert_id: int, user_id: str | None = None) -> AlertRule:
        """Return one rule.

        Raises:
            AlertNotFoundError: No such rule for this user.
        """
        rule = await self._repository.get_alert(alert_id, user_id)
        if rule is None:
            raise AlertNotFoundError(alert_id)
        return rule

    async def update_alert(
        self, alert_id: int, update: AlertRuleUpdate, user_id: str | None = None
    ) -> AlertRule:
        """Apply a partial update.

        Raises:
            AlertNotFoundError: No such rule for this user.
            pydantic.ValidationError: The merged rule has the wrong threshold.
        """
        rule = await self._repository.update_alert(alert_id, update, user_id)
        if rule is None:
            raise AlertNotFoundError(alert_id)
        logger.info("Alert updated: %d by user %s", alert_id, user_id)
        return rule

    async def delete_alert(self, alert_id: int, user_id: str | None = None) -> None:
        """Delete a rule.

        Raises:
            AlertNotFoundError: No such rule for this user.
        """
        if not await self._repository.delete_alert(alert_id, user_id):
            raise AlertNotFoundError(alert_id)
        logger.info("Alert deleted: %d by user %s", alert_id, user_id)

    async def get_alert_stats(self, user_id: str | None = None) -> AlertStats:
        return await self._repository.get_alert_stats(user_id)

    # ------------------------------------------------------------------
    # Evaluation and triggering
    # ------------------------------------------------------------------

    async def check_alerts(self, snapshots: Sequence[PriceSnapshot]) -> list[TriggeredAlert]:
        """Evaluate every active rule against ``snapshots`` and trigger matches.

        The active rule set is read once at the start of the check. A rule
        edited or deleted while the check runs may still fire once.
        """
        if not snapshots:
            return []

        rules = await self._repository.list_active_alerts()
        fired = evaluate_rules(rules, snapshots)
        logger.debug("Checked %d active rules: %d fired", len(rules), len(fired))

        triggered: list[TriggeredAlert] = []
        for rule, snapshot in fired:
            triggered.append(await self.trigger_alert(rule, snapshot))
        return triggered

    async def trigger_alert(self, rule: AlertRule, snapshot: PriceSnapshot) -> TriggeredAlert:
        """Push, email (if opted in), then deactivate. Each step is isolated."""
        alert = TriggeredAlert(
            rule=rule,
            snapshot=snapshot,
            current_price=snapshot.current_price,
            price_change_percentage_24h=snapshot.price_change_percentage_24h,
            triggered_at=datetime.datetime.now(datetime.UTC),
        )
        logger.info(
            "Alert triggered: %s %s (id=%d, user=%s, price=%s, threshold=%s)",
            rule.symbol,
            rule.condition,
            rule.id,
            rule.user_id,
            snapshot.current_price,
            rule.threshold,
        )

        try:
            self._hub.send_alert(alert)
        except Exception:
            logger.exception("Failed to push alert %d", rule.id)

        await self._send_email(alert)

        try:
            if not await self._repository.deactivate_alert(rule.id):
                logger.warning("Alert %d was removed before it could be deactivated", rule.id)
        except Exception:
            logger.exception("Failed to deactivate alert %d", rule.id)

        return alert

    async def _send_email(self, alert: TriggeredAlert) -> None:
        rule = alert.rule
        try:
            prefs = await self._repository.get_notification_preferences(rule.user_id)
        except Exception:
            logger.exception("Failed to load notification preferences for %s", rule.user_id)
            return

        if prefs is None or not prefs.email_notifications or not prefs.email:
            logger.debug("User %s has email notifications off", rule.user_id)
            return

        try:
            await self._email.send_alert_email(prefs, alert)
        except Exception:
            logger.exception("Failed to email alert %d to %s", rule.id, prefs.email)
