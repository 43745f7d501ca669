"""SMTP delivery of registry notification mails.

The notifier hands a rendered HTML digest and a list of addresses to a
MailSender. SmtpMailSender delivers it as a single message with every
address in To, over plain SMTP, STARTTLS or implicit TLS depending on
settings. Delivery errors never escape send(): they come back as a failed
MailResult.
"""

from __future__ import annotations

import logging
import secrets
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from contract_registry.core.config import SMTPSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MailResult:
    """Outcome of one send.

    Attributes:
        success: Whether the message was accepted by the SMTP server.
        error: Error message if the send failed.
        message_id: Message-ID header of the sent message.
    """

    success: bool
    error: str | None = None
    message_id: str | None = None


class EmailDeliveryError(Exception):
    """Raised when a message cannot be handed to the SMTP server."""

    pass


@runtime_checkable
class MailSender(Protocol):
    """Delivers one HTML message to a set of addresses."""

    async def send(
        self,
        addresses: Sequence[str],
        subject: str,
        html_body: str,
    ) -> MailResult: ...


class SmtpMailSender:
    """MailSender backed by smtplib.

    Attributes:
        smtp_settings: SMTP configuration for email delivery.
    """

    def __init__(self, smtp_settings: SMTPSettings) -> None:
        self.smtp_settings = smtp_settings

    async def send(
        self,
        addresses: Sequence[str],
        subject: str,
        html_body: str,
    ) -> MailResult:
        """Send html_body to every address in one message.

        Returns:
            MailResult; failures are reported, never raised.
        """
        recipients = [address.strip() for address in addresses if address and address.strip()]
        if not recipients:
            logger.warning("Mail not sent, no valid recipients: subject=%s", subject)
            return MailResult(success=False, error="No valid recipients")

        if not self.smtp_settings.enabled:
            logger.info(
                "Mail sending disabled, message not delivered: to=%s, subject=%s",
                ", ".join(recipients),
                subject,
            )
            return MailResult(success=True)

        try:
            message_id = self._send_email(recipients, subject, html_body)
        except EmailDeliveryError as e:
            logger.error(
                "Failed to send mail",
                extra={"subject": subject, "recipients": len(recipients), "error": str(e)},
            )
            return MailResult(success=False, error=str(e))

        logger.info(
            "Mail sent to %d recipients: subject=%s, message_id=%s",
            len(recipients),
            subject,
            message_id,
        )
        return MailResult(success=True, message_id=message_id)

    def _send_email(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
    ) -> str:
        """Send a message via SMTP.

        Returns:
            Message-ID of the sent message.

        Raises:
            EmailDeliveryError: If the message cannot be sent.
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.smtp_settings.from_name, self.smtp_settings.from_address))
        msg["To"] = ", ".join(recipients)

        message_id = f"<{secrets.token_hex(16)}@{self._get_domain()}>"
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            if self.smtp_settings.use_ssl:
                # Implicit TLS (port 465)
                server = smtplib.SMTP_SSL(
                    self.smtp_settings.host,
                    self.smtp_settings.port,
                    timeout=self.smtp_settings.timeout,
                    context=ssl.create_default_context(),
                )
            else:
                server = smtplib.SMTP(
                    self.smtp_settings.host,
                    self.smtp_settings.port,
                    timeout=self.smtp_settings.timeout,
                )
                if self.smtp_settings.use_tls:
                    server.starttls(context=ssl.create_default_context())

            try:
                if self.smtp_settings.username and self.smtp_settings.password:
                    server.login(
                        self.smtp_settings.username,
                        self.smtp_settings.password.get_secret_value(),
                    )
                server.sendmail(self.smtp_settings.from_address, recipients, msg.as_string())
            finally:
                server.quit()

            return message_id

        except smtplib.SMTPAuthenticationError as e:
            msg_text = f"SMTP authentication failed: {e}"
            raise EmailDeliveryError(msg_text) from e
        except smtplib.SMTPException as e:
            msg_text = f"SMTP error: {e}"
            raise EmailDeliveryError(msg_text) from e
        except OSError as e:
            msg_text = f"Connection error: {e}"
            raise EmailDeliveryError(msg_text) from e

    def _get_domain(self) -> str:
        """Domain part of the sender address, used in Message-ID."""
        _, _, domain = self.smtp_settings.from_address.partition("@")
        return domain or "localhost"
