import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from farewatch.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class AlertFacts:
    paid_price: Decimal
    current_price: Decimal
    savings: Decimal
    savings_percent: Decimal
    fare_class: Optional[str] = None


@dataclass
class SendResult:
    sent: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class AlertDispatcher(ABC):
    """Consumed interface: notify a trip's owner about a price drop."""

    @abstractmethod
    async def notify(self, trip, facts: AlertFacts) -> SendResult:
        ...


def _money(value) -> str:
    return f"${Decimal(value):,.2f}"


def build_alert_message(trip, facts: AlertFacts, from_email: str) -> EmailMessage:
    trip_name = trip.name or f"Trip {trip.id}"
    msg = EmailMessage()
    msg["Subject"] = f"Price Drop Alert: Save {_money(facts.savings)} on {trip_name}"
    msg["From"] = from_email
    msg["To"] = trip.user_email
    msg["Message-ID"] = make_msgid(domain="farewatch.app")

    lines = [
        f"Good news! The fare for {trip_name} has dropped.",
        "",
    ]
    if trip.record_locator:
        lines.append(f"Confirmation: {trip.record_locator}")
    if facts.fare_class:
        lines.append(f"Fare class: {facts.fare_class.replace('_', ' ')}")
    lines.extend([
        f"You paid: {_money(facts.paid_price)}",
        f"Current price: {_money(facts.current_price)}",
        f"You could save: {_money(facts.savings)} ({facts.savings_percent}%)",
        "",
        "Contact your airline to ask about a fare adjustment or travel credit.",
    ])
    msg.set_content("\n".join(lines))
    return msg


class EmailAlertDispatcher(AlertDispatcher):
    """Sends price-drop emails over SMTP."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def is_configured(self) -> bool:
        return bool(self.settings.smtp_username and self.settings.smtp_password)

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.alert_timeout_seconds,
        ) as server:
            server.starttls()
            server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.send_message(msg)

    async def notify(self, trip, facts: AlertFacts) -> SendResult:
        if not self.settings.alerts_enabled:
            logger.info(f"Alerts disabled, not emailing {trip.user_email} about trip {trip.id}")
            return SendResult(sent=False, error="alerts disabled")

        if not self.is_configured():
            logger.warning("SMTP settings are not configured, alert not sent")
            return SendResult(sent=False, error="smtp not configured")

        msg = build_alert_message(trip, facts, self.settings.alert_from_email)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Alert email to {trip.user_email} failed: {e}")
            return SendResult(sent=False, error=str(e))

        logger.info(f"Alert sent to {trip.user_email} for trip {trip.id}")
        return SendResult(sent=True, message_id=msg.get("Message-ID"))
