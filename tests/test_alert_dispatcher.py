"""Tests for price-drop alert emails."""
import smtplib
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from farewatch.services.alert_dispatcher import AlertFacts, EmailAlertDispatcher, build_alert_message

from conftest import make_settings

TRIP = SimpleNamespace(id=3, name="Lisbon", user_email="traveler@example.com", record_locator="ABC123")
FACTS = AlertFacts(
    paid_price=Decimal("599"),
    current_price=Decimal("549"),
    savings=Decimal("50"),
    savings_percent=Decimal("8.35"),
    fare_class="main_cabin",
)


def smtp_settings(**overrides):
    values = dict(smtp_username="bot@example.com", smtp_password="secret")
    values.update(overrides)
    return make_settings(**values)


class TestBuildAlertMessage:
    def test_message_contents(self):
        msg = build_alert_message(TRIP, FACTS, "Farewatch <noreply@farewatch.app>")

        assert msg["Subject"] == "Price Drop Alert: Save $50.00 on Lisbon"
        assert msg["To"] == "traveler@example.com"
        assert msg["Message-ID"]
        body = msg.get_content()
        assert "Confirmation: ABC123" in body
        assert "You paid: $599.00" in body
        assert "Current price: $549.00" in body
        assert "main cabin" in body


class TestEmailAlertDispatcher:
    async def test_sends_over_smtp(self):
        dispatcher = EmailAlertDispatcher(smtp_settings())
        server = MagicMock()

        with patch("farewatch.services.alert_dispatcher.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = server
            result = await dispatcher.notify(TRIP, FACTS)

        smtp_cls.assert_called_once_with("smtp.gmail.com", 587, timeout=30)
        assert result.sent is True
        assert result.message_id
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        server.send_message.assert_called_once()

    async def test_smtp_failure_is_reported(self):
        dispatcher = EmailAlertDispatcher(smtp_settings())

        with patch("farewatch.services.alert_dispatcher.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.side_effect = smtplib.SMTPConnectError(421, "busy")
            result = await dispatcher.notify(TRIP, FACTS)

        assert result.sent is False
        assert "busy" in result.error

    async def test_unconfigured_smtp(self):
        result = await EmailAlertDispatcher(make_settings()).notify(TRIP, FACTS)

        assert result.sent is False
        assert result.error == "smtp not configured"

    async def test_alerts_switched_off(self):
        result = await EmailAlertDispatcher(smtp_settings(alerts_enabled=False)).notify(TRIP, FACTS)

        assert result.sent is False
        assert result.error == "alerts disabled"
