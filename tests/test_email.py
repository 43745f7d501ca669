"""Tests for SMTP delivery of digest mails.

Tests verify:
- One message goes to every recipient
- Blank addresses are dropped
- Disabled sending only logs
- Plain SMTP, STARTTLS, implicit TLS and login
- SMTP and connection errors come back as failed results
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from contract_registry.services.email import (
    EmailDeliveryError,
    MailResult,
    MailSender,
    SmtpMailSender,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_smtp_settings() -> MagicMock:
    """Create mock SMTP settings for testing."""
    settings = MagicMock()
    settings.enabled = True
    settings.host = "localhost"
    settings.port = 1025
    settings.username = None
    settings.password = None
    settings.use_tls = False
    settings.use_ssl = False
    settings.from_address = "noreply@registro.test"
    settings.from_name = "Registro Test"
    settings.timeout = 30
    return settings


@pytest.fixture
def sender(mock_smtp_settings: MagicMock) -> SmtpMailSender:
    return SmtpMailSender(mock_smtp_settings)


# ---------------------------------------------------------------------------
# send()
# ---------------------------------------------------------------------------


class TestSend:
    """Tests for SmtpMailSender.send."""

    def test_satisfies_protocol(self, sender: SmtpMailSender) -> None:
        assert isinstance(sender, MailSender)

    @pytest.mark.asyncio
    @patch("contract_registry.services.email.smtplib.SMTP")
    async def test_single_message_to_all_recipients(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        mock_smtp = MagicMock()
        mock_smtp_class.return_value = mock_smtp

        result = await sender.send(
            ["legale@example.com", "acquisti@example.com"],
            "❌ Contratto scaduto: CONTR-2024-0001",
            "<p>digest</p>",
        )

        assert result.success is True
        assert result.message_id.endswith("@registro.test>")
        mock_smtp.sendmail.assert_called_once()
        from_address, to_addresses, raw = mock_smtp.sendmail.call_args.args
        assert from_address == "noreply@registro.test"
        assert to_addresses == ["legale@example.com", "acquisti@example.com"]
        assert "legale@example.com, acquisti@example.com" in raw

    @pytest.mark.asyncio
    @patch("contract_registry.services.email.smtplib.SMTP")
    async def test_blank_addresses_are_dropped(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        mock_smtp = MagicMock()
        mock_smtp_class.return_value = mock_smtp

        await sender.send(["", "  ", " legale@example.com "], "Oggetto", "<p>x</p>")

        _, to_addresses, _ = mock_smtp.sendmail.call_args.args
        assert to_addresses == ["legale@example.com"]

    @pytest.mark.asyncio
    @patch("contract_registry.services.email.smtplib.SMTP")
    async def test_no_valid_recipients(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        result = await sender.send(["", " "], "Oggetto", "<p>x</p>")

        assert result == MailResult(success=False, error="No valid recipients")
        mock_smtp_class.assert_not_called()

    @pytest.mark.asyncio
    @patch("contract_registry.services.email.smtplib.SMTP")
    async def test_disabled_sending_only_logs(
        self,
        mock_smtp_class: MagicMock,
        mock_smtp_settings: MagicMock,
    ) -> None:
        mock_smtp_settings.enabled = False

        result = await SmtpMailSender(mock_smtp_settings).send(
            ["legale@example.com"], "Oggetto", "<p>x</p>"
        )

        assert result.success is True
        assert result.message_id is None
        mock_smtp_class.assert_not_called()

    @pytest.mark.asyncio
    @patch("contract_registry.services.email.SmtpMailSender._send_email")
    async def test_delivery_error_becomes_failed_result(
        self,
        mock_send: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        mock_send.side_effect = EmailDeliveryError("SMTP connection failed")

        result = await sender.send(["legale@example.com"], "Oggetto", "<p>x</p>")

        assert result.success is False
        assert "SMTP connection failed" in result.error


# ---------------------------------------------------------------------------
# SMTP Integration Tests (with mocking)
# ---------------------------------------------------------------------------


class TestSMTPIntegration:
    """Tests for SMTP sending functionality."""

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_plain_smtp(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        """Plain SMTP should work without TLS."""
        mock_smtp = MagicMock()
        mock_smtp_class.return_value = mock_smtp

        sender._send_email(["legale@example.com"], "Test", "<p>HTML</p>")

        mock_smtp_class.assert_called_once_with("localhost", 1025, timeout=30)
        mock_smtp.starttls.assert_not_called()
        mock_smtp.login.assert_not_called()
        mock_smtp.quit.assert_called_once()

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_with_starttls(
        self,
        mock_smtp_class: MagicMock,
        mock_smtp_settings: MagicMock,
    ) -> None:
        """SMTP with STARTTLS should call starttls()."""
        mock_smtp_settings.use_tls = True
        mock_smtp = MagicMock()
        mock_smtp_class.return_value = mock_smtp

        SmtpMailSender(mock_smtp_settings)._send_email(["a@example.com"], "Test", "<p>x</p>")

        mock_smtp.starttls.assert_called_once()

    @patch("contract_registry.services.email.smtplib.SMTP_SSL")
    def test_send_email_with_ssl(
        self,
        mock_smtp_ssl_class: MagicMock,
        mock_smtp_settings: MagicMock,
    ) -> None:
        """SMTP with SSL should use SMTP_SSL."""
        mock_smtp_settings.use_ssl = True
        mock_smtp_ssl_class.return_value = MagicMock()

        SmtpMailSender(mock_smtp_settings)._send_email(["a@example.com"], "Test", "<p>x</p>")

        mock_smtp_ssl_class.assert_called_once()

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_with_auth(
        self,
        mock_smtp_class: MagicMock,
        mock_smtp_settings: MagicMock,
    ) -> None:
        """SMTP with credentials should authenticate."""
        mock_smtp_settings.username = "registro"
        mock_smtp_settings.password = MagicMock()
        mock_smtp_settings.password.get_secret_value.return_value = "secret"
        mock_smtp = MagicMock()
        mock_smtp_class.return_value = mock_smtp

        SmtpMailSender(mock_smtp_settings)._send_email(["a@example.com"], "Test", "<p>x</p>")

        mock_smtp.login.assert_called_once_with("registro", "secret")

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_auth_error(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        mock_smtp = MagicMock()
        mock_smtp.sendmail.side_effect = smtplib.SMTPAuthenticationError(535, b"denied")
        mock_smtp_class.return_value = mock_smtp

        with pytest.raises(EmailDeliveryError, match="authentication failed"):
            sender._send_email(["a@example.com"], "Test", "<p>x</p>")

        mock_smtp.quit.assert_called_once()

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_smtp_error(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        """SMTP error should raise EmailDeliveryError."""
        mock_smtp = MagicMock()
        mock_smtp.sendmail.side_effect = smtplib.SMTPException("Connection refused")
        mock_smtp_class.return_value = mock_smtp

        with pytest.raises(EmailDeliveryError, match="SMTP error"):
            sender._send_email(["a@example.com"], "Test", "<p>x</p>")

    @patch("contract_registry.services.email.smtplib.SMTP")
    def test_send_email_connection_error(
        self,
        mock_smtp_class: MagicMock,
        sender: SmtpMailSender,
    ) -> None:
        """Connection error should raise EmailDeliveryError."""
        mock_smtp_class.side_effect = OSError("Network unreachable")

        with pytest.raises(EmailDeliveryError, match="Connection error"):
            sender._send_email(["a@example.com"], "Test", "<p>x</p>")

    def test_domain_fallback(self, mock_smtp_settings: MagicMock) -> None:
        mock_smtp_settings.from_address = "noreply"
        assert SmtpMailSender(mock_smtp_settings)._get_domain() == "localhost"
