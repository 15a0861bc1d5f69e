"""Alert email delivery.

``SmtpEmailService`` renders the alert email from Jinja2 templates (plain
text plus HTML alternative) and sends it with ``smtplib`` in a worker thread.
``NullEmailService`` is used when no SMTP host is configured: it logs and
drops the message.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from decimal import Decimal, InvalidOperation
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Final, Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from Crypto_Monitor.config import EmailSettings
from Crypto_Monitor.models.alerts import NotificationPreferences, TriggeredAlert
from Crypto_Monitor.models.enums import AlertCondition

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TEMPLATES_DIR: Final[Path] = Path(__file__).resolve().parent.parent / "templates" / "email"
SMTP_TIMEOUT: Final[float] = 15.0

_CONDITION_LABELS: Final[dict[str, str]] = {
    AlertCondition.ABOVE: "Price above",
    AlertCondition.BELOW: "Price below",
    AlertCondition.PERCENT_INCREASE: "24h increase of at least",
    AlertCondition.PERCENT_DECREASE: "24h decrease of at least",
}


# ---------------------------------------------------------------------------
# Template filters
# ---------------------------------------------------------------------------


def money_filter(value: str | Decimal | None) -> str:
    """Format Decimal/string as currency: '61000' -> '$61,000.00'."""
    if value is None:
        return "—"
    try:
        d = Decimal(str(value))
        return f"${d:,.2f}"
    except (InvalidOperation, ValueError):
        return str(value)


def pct_raw_filter(value: str | Decimal | None) -> str:
    """Format already-percentage value: -5.25 -> '-5.25%'."""
    if value is None:
        return "—"
    try:
        return f"{Decimal(str(value)):.2f}%"
    except (InvalidOperation, ValueError):
        return str(value)


def condition_label_filter(value: str) -> str:
    return _CONDITION_LABELS.get(value, str(value))


def build_template_environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(enabled_extensions=("html",), default=False),
        keep_trailing_newline=True,
    )
    env.filters["money"] = money_filter
    env.filters["pct_raw"] = pct_raw_filter
    env.filters["condition_label"] = condition_label_filter
    return env


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


class EmailService(Protocol):
    """Anything that can deliver an alert email."""

    async def send_alert_email(
        self, prefs: NotificationPreferences, alert: TriggeredAlert
    ) -> None: ...


class NullEmailService:
    """Drop alert emails. Used when SMTP is not configured."""

    async def send_alert_email(self, prefs: NotificationPreferences, alert: TriggeredAlert) -> None:
        logger.info(
            "Email disabled; not sending %s alert to user %s",
            alert.rule.symbol,
            prefs.user_id,
        )


class SmtpEmailService:
    """Send alert emails over SMTP.

    Usage::

        email = SmtpEmailService(settings.email, client_url=settings.client_url)
        await email.send_alert_email(prefs, triggered)

    Raises whatever ``smtplib`` raises; callers decide whether a failed
    delivery matters.
    """

    def __init__(self, settings: EmailSettings, *, client_url: str) -> None:
        self._settings = settings
        self._client_url = client_url.rstrip("/")
        self._templates = build_template_environment()

        logger.info(
            "SmtpEmailService initialized: host=%s port=%d tls=%s",
            settings.host,
            settings.port,
            settings.use_tls,
        )

    def build_alert_message(
        self, prefs: NotificationPreferences, alert: TriggeredAlert
    ) -> EmailMessage:
        """Render the alert email for ``prefs.email``."""
        if not prefs.email:
            msg = f"User {prefs.user_id} has no email address."
            raise ValueError(msg)

        context = {
            "first_name": prefs.first_name,
            "rule": alert.rule,
            "current_price": alert.current_price,
            "change_24h": alert.price_change_percentage_24h,
            "dashboard_url": f"{self._client_url}/dashboard",
        }

        message = EmailMessage()
        message["Subject"] = f"Price Alert: {alert.rule.symbol} - Crypto Monitor"
        message["From"] = formataddr((self._settings.from_name, self._settings.from_address))
        message["To"] = prefs.email
        message.set_content(self._templates.get_template("alert.txt").render(context))
        message.add_alternative(
            self._templates.get_template("alert.html").render(context), subtype="html"
        )
        return message

    async def send_alert_email(self, prefs: NotificationPreferences, alert: TriggeredAlert) -> None:
        message = self.build_alert_message(prefs, alert)
        await asyncio.to_thread(self._send, message)
        logger.info("Alert email sent to %s for %s", prefs.email, alert.rule.symbol)

    def _send(self, message: EmailMessage) -> None:
        """Blocking SMTP delivery (run via asyncio.to_thread)."""
        host = self._settings.host or "localhost"
        smtp_cls = smtplib.SMTP_SSL if self._settings.use_tls else smtplib.SMTP
        with smtp_cls(host, self._settings.port, timeout=SMTP_TIMEOUT) as smtp:
            if not self._settings.use_tls:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
            if self._settings.username and self._settings.password:
                smtp.login(self._settings.username, self._settings.password)
            smtp.send_message(message)


def create_email_service(settings: EmailSettings, *, client_url: str) -> EmailService:
    """Return an SMTP service when a host is configured, else the null service."""
    if settings.enabled:
        return SmtpEmailService(settings, client_url=client_url)
    logger.info("No EMAIL_HOST configured; alert emails are disabled.")
    return NullEmailService()
